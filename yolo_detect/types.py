from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box as top-left corner plus size.
    """

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> "BoundingBox":
        return cls(x=float(x1), y=float(y1), width=float(x2 - x1), height=float(y2 - y1))

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.right, self.bottom

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DetectionResult:
    label: str
    confidence: float
    bounding_box: BoundingBox

    def to_dict(self) -> Dict[str, object]:
        # Key names are what the overlay renderer destructures.
        return {"label": self.label, "confidence": self.confidence, "box": self.bounding_box.to_dict()}


@dataclass(frozen=True)
class CandidateDetection:
    """
    Decoded box before suppression. `box` is already in the output coordinate space.
    """

    box: BoundingBox
    confidence: float
    class_id: int
    label: str

    def to_result(self) -> DetectionResult:
        return DetectionResult(label=self.label, confidence=self.confidence, bounding_box=self.box)


@dataclass
class ModelOutput:
    """
    Raw output tensors of one inference call, one (boxes, scores) pair per detection layer.
    """

    boxes: List[np.ndarray] = field(default_factory=list)
    scores: List[np.ndarray] = field(default_factory=list)
