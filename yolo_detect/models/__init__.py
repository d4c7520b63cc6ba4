"""
Per-architecture decoder strategies.
"""

from __future__ import annotations

from typing import Dict, Sequence, Type

from ..backends import InferenceBackend
from ..config import Architecture, ModelConfig
from .base import DecoderStrategy
from .tiny_yolov3 import TinyYoloV3Strategy
from .yolov4 import TensorLayout, YoloV4Strategy, resolve_tensor_layout

_STRATEGIES: Dict[Architecture, Type[DecoderStrategy]] = {
    Architecture.TINY_YOLOV3: TinyYoloV3Strategy,
    Architecture.YOLOV4: YoloV4Strategy,
}


def create_strategy(config: ModelConfig, labels: Sequence[str], backend: InferenceBackend) -> DecoderStrategy:
    return _STRATEGIES[config.architecture](config, labels, backend)


__all__ = [
    "DecoderStrategy",
    "TinyYoloV3Strategy",
    "YoloV4Strategy",
    "TensorLayout",
    "resolve_tensor_layout",
    "create_strategy",
]
