from __future__ import annotations

import logging
from typing import List

import numpy as np

from ..config import Architecture, ensure_labels_cover
from ..errors import DecodingError
from ..preprocess import ChannelOrder, PreprocessResult
from ..types import CandidateDetection, ModelOutput
from .base import DecoderStrategy

logger = logging.getLogger(__name__)


class TinyYoloV3Strategy(DecoderStrategy):
    """
    TinyYOLOv3 exports with a built-in `yolonms` layer.

    Layout (per image):
    - input `image`: (1, 3, S, S) RGB in [0, 1]
    - input `shape`: (1, 2) original (height, width); the model maps boxes back to
      original-image pixels with it
    - output `boxes`: (1, N, 4) as [y1, x1, y2, x2]
    - output `scores`: (1, C, N)
    """

    architecture = Architecture.TINY_YOLOV3
    channel_order = ChannelOrder.NCHW

    def __init__(self, config, labels, backend):
        super().__init__(config, labels, backend)
        declared = self.backend.output_shapes.get(config.output_tensors["scores"], ())
        if len(declared) == 3 and declared[1] is not None:
            ensure_labels_cover(self.labels, int(declared[1]))

    def required_inputs(self) -> List[str]:
        return [self.config.image_input_name, self.config.input_tensors["shape"]]

    def required_outputs(self) -> List[str]:
        return [self.config.output_tensors["boxes"], self.config.output_tensors["scores"]]

    def run_inference(self, prep: PreprocessResult) -> ModelOutput:
        feeds = {
            self.config.image_input_name: prep.input_tensor,
            self.config.input_tensors["shape"]: prep.shape_tensor,
        }
        boxes_name, scores_name = self.required_outputs()
        outputs = self._run(feeds, [boxes_name, scores_name])
        return ModelOutput(boxes=[outputs[boxes_name]], scores=[outputs[scores_name]])

    def decode_outputs(self, output: ModelOutput, orig_w: int, orig_h: int) -> List[CandidateDetection]:
        if len(output.boxes) != 1 or len(output.scores) != 1:
            raise DecodingError(
                f"Expected one boxes/scores pair, got {len(output.boxes)} boxes and {len(output.scores)} scores"
            )

        boxes = np.asarray(output.boxes[0])
        scores = np.asarray(output.scores[0])
        logger.debug("Boxes shape: %s, scores shape: %s", boxes.shape, scores.shape)

        if boxes.ndim != 3 or boxes.shape[0] != 1 or boxes.shape[2] != 4:
            logger.error("Unexpected boxes tensor shape %s (expected (1, N, 4))", boxes.shape)
            raise DecodingError(f"Unexpected boxes tensor shape {boxes.shape}, expected (1, N, 4)")
        if scores.ndim != 3 or scores.shape[0] != 1 or scores.shape[2] != boxes.shape[1]:
            logger.error("Unexpected scores tensor shape %s for boxes %s", scores.shape, boxes.shape)
            raise DecodingError(f"Unexpected scores tensor shape {scores.shape}, expected (1, C, {boxes.shape[1]})")

        n = boxes.shape[1]
        if n == 0 or scores.shape[1] == 0:
            return []

        class_scores = scores[0]  # (C, N)
        # argmax returns the first class at a tied maximum.
        class_ids = np.argmax(class_scores, axis=0)
        best = class_scores[class_ids, np.arange(n)]

        keep = best >= self.config.confidence_threshold
        if not np.any(keep):
            return []

        y1x1y2x2 = boxes[0][keep].astype(np.float64)
        boxes_xyxy = y1x1y2x2[:, [1, 0, 3, 2]]
        boxes_xyxy = self._to_output_space(boxes_xyxy, orig_w, orig_h)

        candidates = self._make_candidates(boxes_xyxy, best[keep], class_ids[keep])
        logger.debug("TinyYOLOv3: %d candidates above %.2f", len(candidates), self.config.confidence_threshold)
        return candidates
