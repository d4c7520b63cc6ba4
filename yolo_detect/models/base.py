from __future__ import annotations

import abc
import logging
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from ..backends import InferenceBackend
from ..config import Architecture, ModelConfig
from ..errors import DecodingError, InferenceError, ModelConfigurationError
from ..geometry import scale_to_display
from ..preprocess import ChannelOrder, Preprocessor, PreprocessResult
from ..types import BoundingBox, CandidateDetection, ModelOutput

logger = logging.getLogger(__name__)


class DecoderStrategy(abc.ABC):
    """
    Per-architecture preprocessing, inference binding and output decoding.

    One instance is chosen when the model is loaded and reused for every frame.
    It holds no per-call state, so it may be shared across threads as long as
    the backend allows concurrent `run` calls.
    """

    architecture: Architecture
    channel_order: ChannelOrder

    def __init__(self, config: ModelConfig, labels: Sequence[str], backend: InferenceBackend):
        if config.architecture is not self.architecture:
            raise ModelConfigurationError(
                f"{type(self).__name__} cannot load a {config.architecture.value} configuration"
            )
        self.config = config
        self.labels: Tuple[str, ...] = tuple(labels)
        self.backend = backend
        self._preprocessor = Preprocessor(config.image_size, self.channel_order)
        self._check_bindings(self.required_inputs(), self.required_outputs())

    @abc.abstractmethod
    def required_inputs(self) -> List[str]:
        ...

    @abc.abstractmethod
    def required_outputs(self) -> List[str]:
        ...

    def preprocess(self, image_bgr: np.ndarray) -> PreprocessResult:
        return self._preprocessor(image_bgr)

    @abc.abstractmethod
    def run_inference(self, prep: PreprocessResult) -> ModelOutput:
        ...

    @abc.abstractmethod
    def decode_outputs(self, output: ModelOutput, orig_w: int, orig_h: int) -> List[CandidateDetection]:
        """
        Turn raw output tensors into pre-NMS candidates in the output coordinate space.
        """

    def close(self) -> None:
        self.backend.close()

    # ------------------------------------------------------------------ #
    # Shared helpers
    # ------------------------------------------------------------------ #
    def _check_bindings(self, inputs: Iterable[str], outputs: Iterable[str]) -> None:
        missing = [f"input '{n}'" for n in inputs if n not in self.backend.input_shapes]
        missing += [f"output '{n}'" for n in outputs if n not in self.backend.output_shapes]
        if missing:
            raise ModelConfigurationError(
                f"Configured tensors not found in model: {', '.join(missing)} "
                f"(model inputs={list(self.backend.input_shapes)}, outputs={list(self.backend.output_shapes)})"
            )

    def _run(self, feeds, output_names: Sequence[str]):
        outputs = self.backend.run(feeds, output_names)
        missing = [n for n in output_names if n not in outputs]
        if missing:
            raise InferenceError(f"Inference did not return outputs: {missing}")
        for name in output_names:
            logger.debug("Output %s shape=%s", name, getattr(outputs[name], "shape", None))
        return outputs

    def _label(self, class_id: int) -> str:
        if not 0 <= class_id < len(self.labels):
            logger.error("Class id %d outside label list of %d entries", class_id, len(self.labels))
            raise DecodingError(f"Class id {class_id} is outside the label list ({len(self.labels)} labels)")
        return self.labels[class_id]

    def _to_output_space(self, boxes_xyxy: np.ndarray, orig_w: int, orig_h: int) -> np.ndarray:
        if self.config.display_size is None:
            return np.asarray(boxes_xyxy, dtype=np.float64)
        return scale_to_display(boxes_xyxy, (orig_w, orig_h), self.config.display_size)

    def _make_candidates(
        self, boxes_xyxy: np.ndarray, scores: np.ndarray, class_ids: np.ndarray
    ) -> List[CandidateDetection]:
        return [
            CandidateDetection(
                box=BoundingBox.from_xyxy(x1, y1, x2, y2),
                confidence=float(score),
                class_id=int(cls_id),
                label=self._label(int(cls_id)),
            )
            for (x1, y1, x2, y2), score, cls_id in zip(boxes_xyxy, scores, class_ids)
        ]
