from __future__ import annotations


class YoloDetectError(Exception):
    """
    Base class for every error raised by yolo_detect.
    """


class ModelConfigurationError(YoloDetectError, ValueError):
    """
    Invalid or incomplete model configuration. Raised at load time only.
    """


class DetectionError(YoloDetectError):
    """
    A single detection call failed. Nothing partial is returned.
    """


class InvalidImage(DetectionError, ValueError):
    pass


class InferenceError(DetectionError):
    pass


class DecodingError(DetectionError, ValueError):
    """
    Raw model output does not match the tensor layout the decoder was built for.
    """


class VideoProcessingCancelled(YoloDetectError):
    pass
