from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .geometry import iou_one_to_many
from .types import CandidateDetection, DetectionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    # None keeps every surviving box.
    max_detections: Optional[int] = None


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of boxes to keep, highest score first.

    A box is dropped only when its IoU with a kept box is strictly greater than
    the threshold. Equal scores keep their input order.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = np.asarray(boxes, dtype=np.float64)
    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(int(i))

        iou = iou_one_to_many(boxes[i], boxes[order[1:]])
        inds = np.where(iou <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


def suppress(candidates: Sequence[CandidateDetection], iou_threshold: float) -> List[DetectionResult]:
    """
    Per-label NMS. Boxes of different labels never suppress each other.

    Output is grouped by label (in order of first appearance), each group sorted by
    confidence. Callers must not assume a global confidence ordering.
    """

    groups: Dict[str, List[CandidateDetection]] = {}
    for cand in candidates:
        groups.setdefault(cand.label, []).append(cand)

    cfg = NMSConfig(iou_threshold=iou_threshold)
    results: List[DetectionResult] = []
    for label, group in groups.items():
        boxes = np.array([c.box.as_xyxy() for c in group], dtype=np.float64)
        scores = np.array([c.confidence for c in group], dtype=np.float64)
        keep = nms(boxes, scores, cfg)
        logger.debug("NMS '%s': %d -> %d", label, len(group), keep.size)
        results.extend(group[i].to_result() for i in keep)

    return results
