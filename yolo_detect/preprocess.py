from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .errors import InvalidImage
from .geometry import LetterboxParams
from .letterbox import letterbox


class ChannelOrder(enum.Enum):
    NCHW = "nchw"  # [1, 3, H, W], TinyYOLOv3 exports
    NHWC = "nhwc"  # [1, H, W, 3], YOLOv4 exports


@dataclass(frozen=True)
class PreprocessResult:
    input_tensor: np.ndarray
    # [[orig_h, orig_w]] float32; ignored by models that don't take a shape input.
    shape_tensor: np.ndarray
    orig_size: Tuple[int, int]  # (width, height)
    letterbox: LetterboxParams


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG/PNG/...) into an OpenCV BGR array.
    """

    if not image_bytes:
        raise InvalidImage("Image data is empty.")
    buf = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None:
        raise InvalidImage(f"Could not decode image ({len(image_bytes)} bytes).")
    return image


class Preprocessor:
    """
    Letterbox a BGR image into the fixed network input tensor.
    """

    def __init__(self, image_size: int, channel_order: ChannelOrder):
        self.image_size = int(image_size)
        self.channel_order = channel_order

    def __call__(self, image_bgr: np.ndarray) -> PreprocessResult:
        if image_bgr is None or not hasattr(image_bgr, "shape"):
            raise InvalidImage("image_bgr must be a NumPy array (BGR).")
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise InvalidImage(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

        if image_bgr.dtype != np.uint8:
            raise InvalidImage(f"Expected uint8 pixels, got {image_bgr.dtype}")

        orig_h, orig_w = image_bgr.shape[:2]
        if orig_w <= 0 or orig_h <= 0:
            raise InvalidImage(f"Image dimensions must be > 0, got {orig_w}x{orig_h}")

        padded, params = letterbox(image_bgr, self.image_size)

        # BGR -> RGB, normalize, add batch
        blob = padded[:, :, ::-1].astype(np.float32) / 255.0
        if self.channel_order is ChannelOrder.NCHW:
            blob = np.transpose(blob, (2, 0, 1))
        blob = np.ascontiguousarray(blob[None, ...])

        shape_tensor = np.array([[orig_h, orig_w]], dtype=np.float32)
        return PreprocessResult(
            input_tensor=blob,
            shape_tensor=shape_tensor,
            orig_size=(orig_w, orig_h),
            letterbox=params,
        )
