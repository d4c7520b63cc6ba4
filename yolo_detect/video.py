"""
Batch detection over the frames of an uploaded video.

Frames are independent, so they may be detected in a bounded worker pool; results
are always re-associated with their frame number. Cancellation is only checked
between frames: a frame that has started always runs to completion.
"""

from __future__ import annotations

import collections
import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import VideoProcessingCancelled
from .ingest import VideoFrame, get_capture_info, iter_video_frames, open_capture
from .types import DetectionResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class FrameDetections:
    frame_number: int
    timestamp_s: float
    detections: Tuple[DetectionResult, ...]


@dataclass(frozen=True)
class ObjectSummary:
    label: str
    count: int
    average_confidence: float


@dataclass(frozen=True)
class VideoProcessingProgress:
    processed: int
    total: Optional[int]

    @property
    def fraction(self) -> Optional[float]:
        if not self.total:
            return None
        return min(1.0, self.processed / self.total)


@dataclass(frozen=True)
class VideoProcessingResult:
    video_path: Path
    total_frames: int
    processed_duration_s: Optional[float]
    frame_results: Tuple[FrameDetections, ...]
    detected_objects: Tuple[ObjectSummary, ...]
    completed_at: datetime


ProgressCallback = Callable[[VideoProcessingProgress], None]
DetectFn = Callable[..., Sequence[DetectionResult]]


def _detect_frame(detect: DetectFn, frame: VideoFrame) -> FrameDetections:
    detections = detect(frame.image)
    logger.debug(
        "Processed frame %d at %.2fs. Found %d objects", frame.frame_number, frame.timestamp_s, len(detections)
    )
    return FrameDetections(frame_number=frame.frame_number, timestamp_s=frame.timestamp_s, detections=tuple(detections))


def _check_cancel(cancel_event: Optional[threading.Event], processed: int) -> None:
    if cancel_event is not None and cancel_event.is_set():
        logger.info("Video processing cancelled after %d frames", processed)
        raise VideoProcessingCancelled(f"Cancelled after {processed} frames")


def process_frames(
    detect: DetectFn,
    frames: Iterable[VideoFrame],
    *,
    total: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    progress: Optional[ProgressCallback] = None,
    workers: int = 1,
) -> List[FrameDetections]:
    """
    Run `detect` (usually `ObjectDetector.detect_image`) over every frame.

    Any detection failure aborts the whole batch and propagates to the caller.
    """

    if workers < 1:
        raise ValueError("workers must be >= 1")

    results: List[FrameDetections] = []

    def _report() -> None:
        if progress is not None:
            progress(VideoProcessingProgress(processed=len(results), total=total))

    if workers == 1:
        for frame in frames:
            _check_cancel(cancel_event, len(results))
            results.append(_detect_frame(detect, frame))
            _report()
        return results

    pending: Deque["Future[FrameDetections]"] = collections.deque()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="detect") as pool:
        try:
            for frame in frames:
                _check_cancel(cancel_event, len(results))
                pending.append(pool.submit(_detect_frame, detect, frame))
                if len(pending) >= workers:
                    results.append(pending.popleft().result())
                    _report()
            while pending:
                results.append(pending.popleft().result())
                _report()
        except BaseException:
            for fut in pending:
                fut.cancel()
            raise

    results.sort(key=lambda r: r.frame_number)
    return results


def summarize_detections(frame_results: Iterable[FrameDetections]) -> List[ObjectSummary]:
    """
    Count detections per label across all frames, in order of first appearance.
    """

    confidences: Dict[str, List[float]] = {}
    for frame in frame_results:
        for det in frame.detections:
            confidences.setdefault(det.label, []).append(det.confidence)

    return [
        ObjectSummary(label=label, count=len(values), average_confidence=sum(values) / len(values))
        for label, values in confidences.items()
    ]


def process_video(
    detect: DetectFn,
    video: PathLike,
    *,
    interval_s: float = 1.0,
    cancel_event: Optional[threading.Event] = None,
    progress: Optional[ProgressCallback] = None,
    workers: int = 1,
) -> VideoProcessingResult:
    path = Path(video)
    cap = open_capture(path)
    try:
        info = get_capture_info(cap)
    finally:
        cap.release()

    duration = info.duration_s
    total = math.ceil(duration / interval_s) if duration else None
    logger.info("Processing video %s: ~%s frames at %.2fs intervals", path.name, total, interval_s)

    try:
        frame_results = process_frames(
            detect,
            iter_video_frames(path, interval_s),
            total=total,
            cancel_event=cancel_event,
            progress=progress,
            workers=workers,
        )
    except VideoProcessingCancelled:
        raise
    except Exception:
        logger.exception("Error processing video %s", path)
        raise

    summaries = summarize_detections(frame_results)
    logger.info(
        "Video processing complete. Processed %d frames with %d total detections",
        len(frame_results),
        sum(s.count for s in summaries),
    )
    return VideoProcessingResult(
        video_path=path,
        total_frames=len(frame_results),
        processed_duration_s=duration,
        frame_results=tuple(frame_results),
        detected_objects=tuple(summaries),
        completed_at=datetime.now(timezone.utc),
    )
