import argparse
import json
import signal
import sys
import threading
from pathlib import Path

from tqdm import tqdm

from yolo_detect import DetectionError, VideoProcessingCancelled, load_detector
from yolo_detect.log import setup_logging
from yolo_detect.video import VideoProcessingProgress, process_video


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Detect objects in a video file, sampling one frame every --interval-s seconds."
    )
    parser.add_argument("--config", default="configs/tiny_yolov3.json", help="Path to the model config JSON.")
    parser.add_argument("--video", required=True, help="Path to an input video file.")
    parser.add_argument("--interval-s", type=float, default=1.0, help="Seconds of video between sampled frames.")
    parser.add_argument("--workers", type=int, default=1, help="Frames detected concurrently (1 = sequential).")
    parser.add_argument("--out", default=None, help="Optional JSON output path for per-frame detections.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    parser.add_argument("--log-file", default=None, help="Optional log file path.")
    args = parser.parse_args()

    if args.interval_s <= 0:
        raise ValueError("--interval-s must be > 0")
    if args.workers < 1:
        raise ValueError("--workers must be >= 1")

    setup_logging(args.log_level, args.log_file)

    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: cancel.set())

    bar = tqdm(unit="frame", desc=Path(args.video).name)

    def _on_progress(p: VideoProcessingProgress) -> None:
        if p.total is not None and bar.total != p.total:
            bar.total = p.total
        bar.update(p.processed - bar.n)

    with load_detector(args.config) as detector:
        try:
            result = process_video(
                detector.detect_image,
                args.video,
                interval_s=args.interval_s,
                cancel_event=cancel,
                progress=_on_progress,
                workers=args.workers,
            )
        except VideoProcessingCancelled as exc:
            print(f"Cancelled: {exc}", file=sys.stderr)
            return 130
        except DetectionError as exc:
            print(f"Video processing aborted: {exc}", file=sys.stderr)
            return 1
        finally:
            bar.close()

    print(f"Processed {result.total_frames} frames")
    for summary in result.detected_objects:
        print(f"{summary.label}: {summary.count} (avg confidence {summary.average_confidence:.2f})")

    if args.out:
        payload = {
            "video": str(result.video_path),
            "total_frames": result.total_frames,
            "completed_at": result.completed_at.isoformat(),
            "frames": [
                {
                    "frame_number": fr.frame_number,
                    "timestamp_s": fr.timestamp_s,
                    "detections": [d.to_dict() for d in fr.detections],
                }
                for fr in result.frame_results
            ],
        }
        Path(args.out).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
