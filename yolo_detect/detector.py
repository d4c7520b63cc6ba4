from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from .config import ModelConfig, load_labels, load_model_config
from .errors import DetectionError
from .models import DecoderStrategy, create_strategy
from .nms import suppress
from .preprocess import decode_image
from .types import DetectionResult

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ObjectDetector:
    """
    Plug-and-play detector: decode -> preprocess (letterbox) -> inference -> decode outputs -> NMS.

    `detect` either returns the full (possibly empty) list of detections or raises
    a DetectionError; there are no partial results and no retries.
    """

    def __init__(self, strategy: DecoderStrategy):
        self.strategy = strategy
        self.config = strategy.config

    @property
    def labels(self) -> Sequence[str]:
        return self.strategy.labels

    def detect(self, image_bytes: bytes) -> List[DetectionResult]:
        try:
            image_bgr = decode_image(image_bytes)
        except DetectionError as exc:
            logger.error("Error decoding image: %s", exc)
            raise
        return self.detect_image(image_bgr)

    def detect_image(self, image_bgr: np.ndarray) -> List[DetectionResult]:
        try:
            prep = self.strategy.preprocess(image_bgr)
            orig_w, orig_h = prep.orig_size
            logger.debug("Image width: %d, height: %d", orig_w, orig_h)

            output = self.strategy.run_inference(prep)
            candidates = self.strategy.decode_outputs(output, orig_w, orig_h)
            results = suppress(candidates, self.config.iou_threshold)
        except DetectionError:
            logger.exception("Error during object detection")
            raise
        except Exception as exc:
            logger.exception("Error during object detection")
            raise DetectionError(f"Object detection failed: {exc}") from exc

        logger.debug("Detections: %d candidates -> %d after NMS", len(candidates), len(results))
        return results

    def __call__(self, image_bgr: np.ndarray) -> List[DetectionResult]:
        return self.detect_image(image_bgr)

    def close(self) -> None:
        self.strategy.close()

    def __enter__(self) -> "ObjectDetector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def load_detector(
    config: Union[PathLike, ModelConfig],
    *,
    onnx_providers: Optional[Sequence[str]] = None,
) -> ObjectDetector:
    """
    Build a detector from a JSON model config (or an already-loaded ModelConfig).

    Typical usage:
        with load_detector("configs/tiny_yolov3.json") as detector:
            results = detector.detect(jpeg_bytes)

    Args:
        config: path to the model config JSON, or a ModelConfig
        onnx_providers: override the providers listed in the config
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    cfg = config if isinstance(config, ModelConfig) else load_model_config(config)
    labels = load_labels(cfg.labels_path)

    providers = onnx_providers if onnx_providers is not None else cfg.onnx_providers
    backend = OnnxRuntimeBackend(cfg.model_path, OnnxRuntimeBackendConfig(providers=providers))
    try:
        strategy = create_strategy(cfg, labels, backend)
    except Exception:
        backend.close()
        raise

    logger.info(
        "Loaded %s detector: %s (%d labels, providers=%s)",
        cfg.architecture.value,
        cfg.model_path.name,
        len(labels),
        list(backend.providers_in_use),
    )
    return ObjectDetector(strategy)
