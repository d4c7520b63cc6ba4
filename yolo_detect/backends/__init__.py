"""
Inference backends for yolo_detect.

Backends are kept in a separate module so core functionality (pre/post-processing)
stays lightweight and can be used without installing inference runtimes.

Any object with `input_shapes`, `output_shapes`, `run(feeds, output_names)` and
`close()` can stand in for a backend.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np


class InferenceBackend(Protocol):
    input_shapes: Dict[str, Tuple[Optional[int], ...]]
    output_shapes: Dict[str, Tuple[Optional[int], ...]]

    def run(self, feeds: Mapping[str, np.ndarray], output_names: Sequence[str]) -> Dict[str, np.ndarray]:
        ...

    def close(self) -> None:
        ...


__all__ = ["InferenceBackend"]
