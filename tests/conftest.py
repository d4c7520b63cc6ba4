from __future__ import annotations

import logging
import sys
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
REPO_ROOT = TESTS_DIR.parent


def _ensure_on_syspath(*dirs: Path) -> None:
    # `import yolo_detect` needs the repo root and `from fakes import ...` needs tests/,
    # whatever import mode pytest runs with.
    for d in dirs:
        d_str = str(d)
        if d_str not in sys.path:
            sys.path.insert(0, d_str)


_ensure_on_syspath(REPO_ROOT, TESTS_DIR)

# Keep decoder debug logs out of captured output unless a test asks for them.
logging.getLogger("yolo_detect").setLevel(logging.INFO)
