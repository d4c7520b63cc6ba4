import argparse
import json
import sys
from pathlib import Path

from yolo_detect import DetectionError, load_detector
from yolo_detect.log import setup_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Run YOLO detection on a single image and print detections as JSON.")
    parser.add_argument("--config", default="configs/tiny_yolov3.json", help="Path to the model config JSON.")
    parser.add_argument("--image", required=True, help="Path to an input image.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...).")
    args = parser.parse_args()

    setup_logging(args.log_level)

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    image_path = Path(args.image)
    if not image_path.exists():
        raise FileNotFoundError(f"Could not read image at path: {image_path}")

    with load_detector(args.config, onnx_providers=onnx_providers) as detector:
        try:
            detections = detector.detect(image_path.read_bytes())
        except DetectionError as exc:
            print(f"Detection failed: {exc}", file=sys.stderr)
            return 1

    for det in detections:
        print(json.dumps(det.to_dict()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
