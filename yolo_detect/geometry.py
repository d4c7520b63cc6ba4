from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxParams:
    """
    Geometry of an aspect-preserving resize into a square canvas.

    pad_x/pad_y are the left/top offsets; the right/bottom pads absorb the odd pixel.
    """

    scale: float
    new_width: int
    new_height: int
    pad_x: int
    pad_y: int
    target_size: int

    @property
    def pad_right(self) -> int:
        return self.target_size - self.new_width - self.pad_x

    @property
    def pad_bottom(self) -> int:
        return self.target_size - self.new_height - self.pad_y


def letterbox_params(width: int, height: int, target_size: int) -> LetterboxParams:
    if width <= 0 or height <= 0:
        raise ValueError(f"Image dimensions must be > 0, got {width}x{height}")
    if target_size <= 0:
        raise ValueError(f"target_size must be > 0, got {target_size}")

    scale = min(target_size / width, target_size / height)
    new_w = max(1, min(target_size, int(round(width * scale))))
    new_h = max(1, min(target_size, int(round(height * scale))))

    return LetterboxParams(
        scale=scale,
        new_width=new_w,
        new_height=new_h,
        pad_x=(target_size - new_w) // 2,
        pad_y=(target_size - new_h) // 2,
        target_size=target_size,
    )


def iou_xyxy(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Intersection over union of two (x1, y1, x2, y2) boxes. Disjoint boxes give exactly 0.
    """

    inter_w = min(a[2], b[2]) - max(a[0], b[0])
    inter_h = min(a[3], b[3]) - max(a[1], b[1])
    if inter_w <= 0 or inter_h <= 0:
        return 0.0

    inter = inter_w * inter_h
    area_a = (a[2] - a[0]) * (a[3] - a[1])
    area_b = (b[2] - b[0]) * (b[3] - b[1])
    union = area_a + area_b - inter
    if union <= 0:
        return 0.0
    return float(inter / union)


def iou_one_to_many(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    Vectorised `iou_xyxy` of one box (4,) against boxes (N, 4).
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.float64)

    inter_w = np.minimum(box[2], boxes[:, 2]) - np.maximum(box[0], boxes[:, 0])
    inter_h = np.minimum(box[3], boxes[:, 3]) - np.maximum(box[1], boxes[:, 1])
    overlap = (inter_w > 0) & (inter_h > 0)
    inter = np.where(overlap, inter_w * inter_h, 0.0)

    area = (box[2] - box[0]) * (box[3] - box[1])
    areas = (boxes[:, 2] - boxes[:, 0]) * (boxes[:, 3] - boxes[:, 1])
    union = area + areas - inter

    out = np.zeros(inter.shape, dtype=np.float64)
    np.divide(inter, union, out=out, where=overlap & (union > 0))
    return out


def scale_to_display(
    boxes_xyxy: np.ndarray,
    orig_size: Tuple[int, int],
    display_size: Tuple[int, int],
) -> np.ndarray:
    """
    Map (N, 4) xyxy boxes from original-image pixels into a (width, height) display space.
    """

    orig_w, orig_h = orig_size
    disp_w, disp_h = display_size
    out = np.asarray(boxes_xyxy, dtype=np.float64).copy()
    out[:, [0, 2]] *= disp_w / float(orig_w)
    out[:, [1, 3]] *= disp_h / float(orig_h)
    return out
