from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CaptureInfo:
    fps: Optional[float]
    width: Optional[int]
    height: Optional[int]
    frame_count: Optional[int]

    @property
    def duration_s(self) -> Optional[float]:
        if self.fps is None or self.frame_count is None:
            return None
        return self.frame_count / self.fps


@dataclass(frozen=True)
class VideoFrame:
    frame_number: int
    timestamp_s: float
    image: np.ndarray


def open_capture(video: PathLike) -> cv2.VideoCapture:
    path = Path(video)
    if not path.exists():
        raise FileNotFoundError(f"Video not found: {path}")
    cap = cv2.VideoCapture(str(path))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open video source: {path}")
    return cap


def get_capture_info(cap: cv2.VideoCapture) -> CaptureInfo:
    fps = cap.get(cv2.CAP_PROP_FPS)
    fps_val = float(fps) if fps and fps > 0 else None

    w = cap.get(cv2.CAP_PROP_FRAME_WIDTH)
    h = cap.get(cv2.CAP_PROP_FRAME_HEIGHT)
    n = cap.get(cv2.CAP_PROP_FRAME_COUNT)
    w_val = int(w) if w and w > 0 else None
    h_val = int(h) if h and h > 0 else None
    n_val = int(n) if n and n > 0 else None

    return CaptureInfo(fps=fps_val, width=w_val, height=h_val, frame_count=n_val)


def _frame_time_s(*, frame_idx: int, fps: Optional[float], pos_msec: float) -> float:
    if fps:
        return float(frame_idx) / float(fps)
    if pos_msec and pos_msec > 0:
        return float(pos_msec) / 1000.0
    return 0.0


def iter_video_frames(video: PathLike, interval_s: float = 1.0) -> Iterator[VideoFrame]:
    """
    Yield one frame every `interval_s` seconds of video time, starting at t=0.

    Frame numbers are sequential sample indices (0, 1, 2, ...), not source frame indices.
    """

    if interval_s <= 0:
        raise ValueError("interval_s must be > 0")

    cap = open_capture(video)
    try:
        info = get_capture_info(cap)
        logger.debug("Video %s: fps=%s size=%sx%s frames=%s", video, info.fps, info.width, info.height, info.frame_count)

        next_t = 0.0
        sample = 0
        frame_idx = 0
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                break
            t = _frame_time_s(frame_idx=frame_idx, fps=info.fps, pos_msec=cap.get(cv2.CAP_PROP_POS_MSEC))
            frame_idx += 1
            # Small tolerance so 1/fps rounding does not skip a sample.
            if t + 1e-6 < next_t:
                continue
            yield VideoFrame(frame_number=sample, timestamp_s=t, image=frame)
            sample += 1
            next_t = sample * interval_s
    finally:
        cap.release()
