from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .errors import ModelConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

YOLOV4_ANCHORS: Tuple[float, ...] = (12, 16, 19, 36, 40, 28, 36, 75, 76, 55, 72, 146, 142, 110, 192, 243, 459, 401)
YOLOV4_STRIDES: Tuple[float, ...] = (8, 16, 32)
YOLOV4_XYSCALE: Tuple[float, ...] = (1.2, 1.1, 1.05)
ANCHORS_PER_LAYER = 3


class Architecture(enum.Enum):
    TINY_YOLOV3 = "tiny_yolov3"
    YOLOV4 = "yolov4"


@dataclass(frozen=True)
class ModelConfig:
    """
    Static model description, loaded once and never mutated.

    Tensor name mappings use logical keys: `image`/`shape` for inputs,
    `boxes`/`scores` (TinyYOLOv3) or `boxes_1..N`/`scores_1..N` (YOLOv4) for outputs.
    """

    architecture: Architecture
    model_path: Path
    labels_path: Path
    image_size: int = 416
    confidence_threshold: float = 0.25
    iou_threshold: float = 0.45
    input_tensors: Dict[str, str] = field(default_factory=dict)
    output_tensors: Dict[str, str] = field(default_factory=dict)
    anchors: Tuple[float, ...] = YOLOV4_ANCHORS
    strides: Tuple[float, ...] = YOLOV4_STRIDES
    xyscale: Tuple[float, ...] = YOLOV4_XYSCALE
    # "auto" resolves from the model's declared output shapes.
    tensor_layout: str = "auto"
    # (width, height) of the space boxes are reported in; None = original image pixels.
    display_size: Optional[Tuple[int, int]] = None
    onnx_providers: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        failures = validate_model_config(self)
        if failures:
            raise ModelConfigurationError("Invalid model configuration:\n  " + "\n  ".join(failures))

    @property
    def image_input_name(self) -> str:
        return self.input_tensors["image"]

    @property
    def shape_input_name(self) -> Optional[str]:
        return self.input_tensors.get("shape")

    def layer_output_names(self, prefix: str) -> List[str]:
        """
        Output tensor names for keys `<prefix>_1..N`, ordered by layer number.
        """

        keyed = []
        for key, name in self.output_tensors.items():
            if key.startswith(f"{prefix}_") and key[len(prefix) + 1 :].isdigit():
                keyed.append((int(key[len(prefix) + 1 :]), name))
        return [name for _, name in sorted(keyed)]

    def layer_anchors(self, layer_index: int) -> List[Tuple[float, float]]:
        start = layer_index * ANCHORS_PER_LAYER * 2
        flat = self.anchors[start : start + ANCHORS_PER_LAYER * 2]
        return [(float(flat[i]), float(flat[i + 1])) for i in range(0, len(flat), 2)]


def validate_model_config(cfg: ModelConfig) -> List[str]:
    """
    Collect every configuration problem instead of stopping at the first.
    """

    failures: List[str] = []

    if not str(cfg.model_path).strip():
        failures.append("model_path: Model path is required")
    if not str(cfg.labels_path).strip():
        failures.append("labels_path: Labels path is required")
    if isinstance(cfg.image_size, bool) or not isinstance(cfg.image_size, int) or not 1 <= cfg.image_size <= 4096:
        failures.append("image_size: Image size must be an integer between 1 and 4096")
    if not 0.0 <= cfg.confidence_threshold <= 1.0:
        failures.append("confidence_threshold: Confidence threshold must be between 0 and 1")
    if not 0.0 <= cfg.iou_threshold <= 1.0:
        failures.append("iou_threshold: IoU threshold must be between 0 and 1")

    if "image" not in cfg.input_tensors:
        failures.append("input_tensors: Input tensor 'image' is required")
    if cfg.tensor_layout not in ("auto", "class_first", "class_last"):
        failures.append("tensor_layout: Must be one of auto, class_first, class_last")

    if cfg.display_size is not None:
        size = cfg.display_size
        if (
            not isinstance(size, (tuple, list))
            or len(size) != 2
            or any(isinstance(v, bool) or not isinstance(v, int) for v in size)
            or any(v <= 0 for v in size)
        ):
            failures.append("display_size: Must be [width, height] with positive values")

    if cfg.architecture is Architecture.TINY_YOLOV3:
        if "shape" not in cfg.input_tensors:
            failures.append("input_tensors: Input tensor 'shape' is required for tiny_yolov3")
        for key in ("boxes", "scores"):
            if key not in cfg.output_tensors:
                failures.append(f"output_tensors: Output tensor '{key}' is required for tiny_yolov3")
    else:
        boxes = cfg.layer_output_names("boxes")
        scores = cfg.layer_output_names("scores")
        n_layers = len(cfg.strides)
        if len(boxes) != n_layers or len(scores) != n_layers:
            failures.append(
                f"output_tensors: Expected boxes_1..boxes_{n_layers} and scores_1..scores_{n_layers} "
                f"(got {len(boxes)} boxes, {len(scores)} scores)"
            )
        if len(cfg.xyscale) != n_layers:
            failures.append(f"xyscale: Expected {n_layers} values, got {len(cfg.xyscale)}")
        if len(cfg.anchors) != n_layers * ANCHORS_PER_LAYER * 2:
            failures.append(
                f"anchors: Expected {n_layers * ANCHORS_PER_LAYER * 2} values "
                f"({ANCHORS_PER_LAYER} width/height pairs per layer), got {len(cfg.anchors)}"
            )
        if any(s <= 0 for s in cfg.strides):
            failures.append("strides: Strides must be > 0")

    return failures


def load_labels(path: PathLike) -> Tuple[str, ...]:
    """
    Read a label file: one label per line, line index = class id.

    Order and duplicates are kept exactly as written; the ordering is a
    contract with the trained model.
    """

    p = Path(path)
    if not p.exists():
        raise ModelConfigurationError(f"Labels file not found: {p}")
    lines = p.read_text(encoding="utf-8").splitlines()
    # A trailing blank line is not a label.
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        raise ModelConfigurationError(f"Labels file is empty: {p}")
    return tuple(line.strip() for line in lines)


_ALLOWED_KEYS = {
    "architecture",
    "model_path",
    "labels_path",
    "image_size",
    "confidence_threshold",
    "iou_threshold",
    "input_tensors",
    "output_tensors",
    "anchors",
    "strides",
    "xyscale",
    "tensor_layout",
    "display_size",
    "onnx_providers",
}


def _require(payload: Dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ModelConfigurationError(f"Missing required key: {key}")
    return payload[key]


def _number_tuple(value: Any, key: str) -> Tuple[float, ...]:
    if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in value):
        raise ModelConfigurationError(f"{key} must be a list of numbers")
    return tuple(float(v) for v in value)


def _str_mapping(value: Any, key: str) -> Dict[str, str]:
    if not isinstance(value, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in value.items()):
        raise ModelConfigurationError(f"{key} must be an object of string -> string")
    return dict(value)


def model_config_from_dict(payload: Dict[str, Any], base_dir: Optional[PathLike] = None) -> ModelConfig:
    """
    Build a ModelConfig from a parsed JSON object. Relative paths resolve against `base_dir`.
    """

    if not isinstance(payload, dict):
        raise ModelConfigurationError("Model config must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise ModelConfigurationError(f"Unknown model config keys: {unknown}")

    arch_raw = _require(payload, "architecture")
    try:
        architecture = Architecture(str(arch_raw).lower())
    except ValueError as exc:
        choices = ", ".join(a.value for a in Architecture)
        raise ModelConfigurationError(f"architecture must be one of {choices}, got {arch_raw!r}") from exc

    base = Path(base_dir) if base_dir is not None else Path.cwd()

    def _path(key: str) -> Path:
        value = _require(payload, key)
        if not isinstance(value, str) or not value.strip():
            raise ModelConfigurationError(f"{key} must be a non-empty string")
        p = Path(value)
        return p if p.is_absolute() else (base / p).resolve()

    kwargs: Dict[str, Any] = {
        "architecture": architecture,
        "model_path": _path("model_path"),
        "labels_path": _path("labels_path"),
        "input_tensors": _str_mapping(_require(payload, "input_tensors"), "input_tensors"),
        "output_tensors": _str_mapping(_require(payload, "output_tensors"), "output_tensors"),
    }

    if "image_size" in payload:
        value = payload["image_size"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ModelConfigurationError("image_size must be an integer")
        kwargs["image_size"] = value
    for key in ("confidence_threshold", "iou_threshold"):
        if key in payload:
            value = payload[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ModelConfigurationError(f"{key} must be a number")
            kwargs[key] = float(value)
    for key in ("anchors", "strides", "xyscale"):
        if key in payload:
            kwargs[key] = _number_tuple(payload[key], key)
    if "tensor_layout" in payload:
        kwargs["tensor_layout"] = str(payload["tensor_layout"]).lower()
    if payload.get("display_size") is not None:
        size = payload["display_size"]
        if not isinstance(size, list) or len(size) != 2 or any(isinstance(v, bool) or not isinstance(v, int) for v in size):
            raise ModelConfigurationError("display_size must be [width, height] integers")
        kwargs["display_size"] = (int(size[0]), int(size[1]))
    if payload.get("onnx_providers") is not None:
        providers = payload["onnx_providers"]
        if not isinstance(providers, list) or not all(isinstance(p, str) and p.strip() for p in providers):
            raise ModelConfigurationError("onnx_providers must be a list of non-empty strings")
        kwargs["onnx_providers"] = tuple(providers)

    return ModelConfig(**kwargs)


def load_model_config(path: PathLike, *, check_files: bool = True) -> ModelConfig:
    p = Path(path)
    if not p.exists():
        raise ModelConfigurationError(f"Model config not found: {p}")
    raw = p.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ModelConfigurationError(f"Invalid model config JSON: {p}") from exc

    cfg = model_config_from_dict(payload, base_dir=p.resolve().parent)
    if check_files:
        missing = [str(f) for f in (cfg.model_path, cfg.labels_path) if not f.exists()]
        if missing:
            raise ModelConfigurationError(f"Model files not found: {missing}")

    logger.info("Loaded %s config from %s (image_size=%d)", cfg.architecture.value, p, cfg.image_size)
    return cfg


def ensure_labels_cover(labels: Sequence[str], num_classes: int) -> None:
    if num_classes > len(labels):
        raise ModelConfigurationError(
            f"Model predicts {num_classes} classes but only {len(labels)} labels were loaded"
        )
