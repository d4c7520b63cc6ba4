"""
YOLO object detection around a pre-trained ONNX model.

Letterbox preprocessing, per-architecture output decoding (TinyYOLOv3 direct
regression, YOLOv4 anchor grids) and per-class NMS. Depends on NumPy and OpenCV;
ONNX Runtime is only imported when a model is loaded.
"""

from .config import Architecture, ModelConfig, load_labels, load_model_config
from .detector import ObjectDetector, load_detector
from .errors import (
    DecodingError,
    DetectionError,
    InferenceError,
    InvalidImage,
    ModelConfigurationError,
    VideoProcessingCancelled,
    YoloDetectError,
)
from .geometry import LetterboxParams, iou_xyxy, letterbox_params
from .letterbox import letterbox
from .models import DecoderStrategy, TensorLayout, create_strategy
from .nms import NMSConfig, nms, suppress
from .preprocess import ChannelOrder, Preprocessor, PreprocessResult, decode_image
from .types import BoundingBox, CandidateDetection, DetectionResult, ModelOutput

__all__ = [
    "Architecture",
    "ModelConfig",
    "load_labels",
    "load_model_config",
    "ObjectDetector",
    "load_detector",
    "DecodingError",
    "DetectionError",
    "InferenceError",
    "InvalidImage",
    "ModelConfigurationError",
    "VideoProcessingCancelled",
    "YoloDetectError",
    "LetterboxParams",
    "iou_xyxy",
    "letterbox_params",
    "letterbox",
    "DecoderStrategy",
    "TensorLayout",
    "create_strategy",
    "NMSConfig",
    "nms",
    "suppress",
    "ChannelOrder",
    "Preprocessor",
    "PreprocessResult",
    "decode_image",
    "BoundingBox",
    "CandidateDetection",
    "DetectionResult",
    "ModelOutput",
]
