from __future__ import annotations

import enum
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config import Architecture, ModelConfig, ensure_labels_cover
from ..errors import DecodingError, ModelConfigurationError
from ..geometry import LetterboxParams, letterbox_params
from ..preprocess import ChannelOrder, PreprocessResult
from ..types import CandidateDetection, ModelOutput
from .base import DecoderStrategy

logger = logging.getLogger(__name__)


class TensorLayout(enum.Enum):
    CLASS_FIRST = "class_first"  # scores (1, C, H, W, A)
    CLASS_LAST = "class_last"  # scores (1, H, W, A, C)


def resolve_tensor_layout(config: ModelConfig, declared_scores_shape: Sequence[Optional[int]]) -> TensorLayout:
    """
    Pick the score tensor layout once, at load time.

    An explicit `tensor_layout` in the config wins. Otherwise the declared shape
    decides: the class axis is the larger of axis 1 and axis 4.
    """

    if config.tensor_layout != "auto":
        return TensorLayout(config.tensor_layout)

    dims = tuple(declared_scores_shape)
    if len(dims) == 5 and dims[1] is not None and dims[4] is not None:
        return TensorLayout.CLASS_FIRST if dims[1] > dims[4] else TensorLayout.CLASS_LAST

    raise ModelConfigurationError(
        f"Cannot infer score tensor layout from declared shape {dims}; set tensor_layout explicitly"
    )


def _sigmoid(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return 1.0 / (1.0 + np.exp(-x))


class YoloV4Strategy(DecoderStrategy):
    """
    YOLOv4 exports with raw per-layer heads (anchor-based grid decoding).

    Layout (per image, per detection layer):
    - input `image`: (1, S, S, 3) RGB in [0, 1]
    - output `boxes_k`: (1, H, W, A, 4) raw [tx, ty, tw, th]
    - output `scores_k`: (1, C, H, W, A) or (1, H, W, A, C), see TensorLayout
    """

    architecture = Architecture.YOLOV4
    channel_order = ChannelOrder.NHWC

    def __init__(self, config, labels, backend):
        super().__init__(config, labels, backend)
        self.boxes_names = config.layer_output_names("boxes")
        self.scores_names = config.layer_output_names("scores")
        self.anchors = [np.array(config.layer_anchors(i), dtype=np.float64) for i in range(len(config.strides))]

        declared = self.backend.output_shapes.get(self.scores_names[0], ())
        self.layout = resolve_tensor_layout(config, declared)
        if len(declared) == 5:
            num_classes = declared[1] if self.layout is TensorLayout.CLASS_FIRST else declared[4]
            if num_classes is not None:
                ensure_labels_cover(self.labels, int(num_classes))
        logger.debug("YOLOv4 score layout: %s", self.layout.value)

    def required_inputs(self) -> List[str]:
        return [self.config.image_input_name]

    def required_outputs(self) -> List[str]:
        return self.config.layer_output_names("boxes") + self.config.layer_output_names("scores")

    def run_inference(self, prep: PreprocessResult) -> ModelOutput:
        # The shape tensor is produced for a uniform contract but YOLOv4 has no such input.
        feeds = {self.config.image_input_name: prep.input_tensor}
        outputs = self._run(feeds, self.boxes_names + self.scores_names)
        return ModelOutput(
            boxes=[outputs[name] for name in self.boxes_names],
            scores=[outputs[name] for name in self.scores_names],
        )

    def decode_outputs(self, output: ModelOutput, orig_w: int, orig_h: int) -> List[CandidateDetection]:
        n_layers = len(self.config.strides)
        if len(output.boxes) != n_layers or len(output.scores) != n_layers:
            raise DecodingError(
                f"Expected {n_layers} detection layers, got {len(output.boxes)} boxes and {len(output.scores)} scores"
            )

        lb = letterbox_params(orig_w, orig_h, self.config.image_size)

        all_boxes: List[np.ndarray] = []
        all_scores: List[np.ndarray] = []
        all_ids: List[np.ndarray] = []
        for layer in range(n_layers):
            boxes, scores, class_ids = self._decode_layer(
                layer, np.asarray(output.boxes[layer]), np.asarray(output.scores[layer]), lb, orig_w, orig_h
            )
            all_boxes.append(boxes)
            all_scores.append(scores)
            all_ids.append(class_ids)

        boxes_xyxy = np.concatenate(all_boxes, axis=0)
        if boxes_xyxy.shape[0] == 0:
            return []

        boxes_xyxy = self._to_output_space(boxes_xyxy, orig_w, orig_h)
        candidates = self._make_candidates(boxes_xyxy, np.concatenate(all_scores), np.concatenate(all_ids))
        logger.debug("YOLOv4: %d candidates above %.2f", len(candidates), self.config.confidence_threshold)
        return candidates

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _layer_scores(self, scores: np.ndarray, grid: Tuple[int, int, int]) -> np.ndarray:
        """
        Return scores as (H, W, A, C) whatever the export layout.
        """

        if scores.ndim == 5 and scores.shape[0] == 1:
            if self.layout is TensorLayout.CLASS_FIRST and scores.shape[2:5] == grid:
                return np.moveaxis(scores[0], 0, -1)
            if self.layout is TensorLayout.CLASS_LAST and scores.shape[1:4] == grid:
                return scores[0]

        logger.error("Scores shape %s does not match %s layout for grid %s", scores.shape, self.layout.value, grid)
        raise DecodingError(f"Scores tensor shape {scores.shape} does not match {self.layout.value} layout for grid {grid}")

    def _decode_layer(
        self,
        layer: int,
        boxes: np.ndarray,
        scores: np.ndarray,
        lb: LetterboxParams,
        orig_w: int,
        orig_h: int,
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        logger.debug("Layer %d - boxes shape: %s, scores shape: %s", layer, boxes.shape, scores.shape)

        anchors = self.anchors[layer]  # (A, 2)
        if boxes.ndim != 5 or boxes.shape[0] != 1 or boxes.shape[4] < 4 or boxes.shape[3] != anchors.shape[0]:
            logger.error("Unexpected box tensor shape %s on layer %d", boxes.shape, layer)
            raise DecodingError(
                f"Unexpected boxes tensor shape {boxes.shape} on layer {layer}, expected (1, H, W, {anchors.shape[0]}, 4)"
            )

        _, grid_h, grid_w, n_anchors, _ = boxes.shape
        layer_scores = self._layer_scores(scores, (grid_h, grid_w, n_anchors))
        if layer_scores.shape[-1] == 0:
            empty = np.empty((0,), dtype=np.float64)
            return np.empty((0, 4), dtype=np.float64), empty, empty.astype(np.int64)

        class_ids = np.argmax(layer_scores, axis=-1)  # (H, W, A)
        best = np.take_along_axis(layer_scores, class_ids[..., None], axis=-1)[..., 0]

        stride = float(self.config.strides[layer])
        xyscale = float(self.config.xyscale[layer])

        t = boxes[0, ..., :4].astype(np.float64)
        grid_y, grid_x = np.meshgrid(np.arange(grid_h), np.arange(grid_w), indexing="ij")
        grid_x = grid_x[..., None]
        grid_y = grid_y[..., None]

        cx = (_sigmoid(t[..., 0]) * xyscale - 0.5 * (xyscale - 1) + grid_x) * stride
        cy = (_sigmoid(t[..., 1]) * xyscale - 0.5 * (xyscale - 1) + grid_y) * stride
        with np.errstate(over="ignore"):
            w = np.exp(t[..., 2]) * anchors[:, 0]
            h = np.exp(t[..., 3]) * anchors[:, 1]

        # Network-input pixels -> original image pixels (undo letterbox).
        x1 = (cx - w / 2 - lb.pad_x) / lb.scale
        y1 = (cy - h / 2 - lb.pad_y) / lb.scale
        x2 = (cx + w / 2 - lb.pad_x) / lb.scale
        y2 = (cy + h / 2 - lb.pad_y) / lb.scale

        boxes_xyxy = np.stack(
            [
                np.clip(x1, 0, orig_w),
                np.clip(y1, 0, orig_h),
                np.clip(x2, 0, orig_w),
                np.clip(y2, 0, orig_h),
            ],
            axis=-1,
        ).reshape(-1, 4)
        best = best.reshape(-1)
        class_ids = class_ids.reshape(-1)

        keep = (
            (best >= self.config.confidence_threshold)
            & (boxes_xyxy[:, 0] < boxes_xyxy[:, 2])
            & (boxes_xyxy[:, 1] < boxes_xyxy[:, 3])
        )
        return boxes_xyxy[keep], best[keep].astype(np.float64), class_ids[keep]
