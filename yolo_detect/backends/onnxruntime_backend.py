from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import InferenceError, ModelConfigurationError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - intra_op_num_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    intra_op_num_threads: int = 0


def _dims(shape: Sequence[object]) -> Tuple[Optional[int], ...]:
    # Symbolic dimensions come back as strings (or None); keep only concrete ints.
    return tuple(d if isinstance(d, int) else None for d in shape)


class OnnxRuntimeBackend:
    """
    Owns a single ONNX Runtime session for the lifetime of the application.

    `run` is safe to call from several threads once the session is built;
    `close` releases the session exactly once.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except ImportError as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise ModelConfigurationError(f"Model file not found: {self.model_path}")

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_num_threads:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_num_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        inputs = session.get_inputs()
        if not inputs:
            del session
            raise ModelConfigurationError(f"No inputs found in the model metadata: {self.model_path}")

        self.session = session
        self._lock = threading.Lock()

        self.input_shapes: Dict[str, Tuple[Optional[int], ...]] = {i.name: _dims(i.shape) for i in inputs}
        self.output_shapes: Dict[str, Tuple[Optional[int], ...]] = {
            o.name: _dims(o.shape) for o in self.session.get_outputs()
        }
        logger.debug("Model inputs: %s", self.input_shapes)
        logger.debug("Model outputs: %s", self.output_shapes)

    @property
    def input_names(self) -> List[str]:
        return list(self.input_shapes)

    @property
    def output_names(self) -> List[str]:
        return list(self.output_shapes)

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        if self.session is None:
            return ()
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    @property
    def closed(self) -> bool:
        return self.session is None

    def run(self, feeds: Mapping[str, np.ndarray], output_names: Sequence[str]) -> Dict[str, np.ndarray]:
        session = self.session
        if session is None:
            raise InferenceError("Inference session is closed.")
        try:
            outputs = session.run(list(output_names), dict(feeds))
        except Exception as exc:
            shapes = {name: getattr(arr, "shape", None) for name, arr in feeds.items()}
            logger.error("Model inference failed (inputs=%s): %s", shapes, exc)
            raise InferenceError(f"Model inference failed: {exc}") from exc
        return dict(zip(output_names, outputs))

    def close(self) -> None:
        with self._lock:
            if self.session is None:
                return
            logger.debug("Releasing ONNX Runtime session for %s", self.model_path)
            self.session = None

    def __enter__(self) -> "OnnxRuntimeBackend":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
