# spinsym/paths.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

OUTPUT_ROOT_ENV = "SPINSYM_OUTPUT_ROOT"


def _repo_root() -> Path:
    # repo_root / spinsym / paths.py  -> parents[1] is repo_root
    return Path(__file__).resolve().parents[1]


def output_root() -> Path:
    """Root for run output: $SPINSYM_OUTPUT_ROOT, else repo_root/outputs."""
    return Path(os.getenv(OUTPUT_ROOT_ENV, _repo_root() / "outputs"))


def run_folder(run_id: str, root: Optional[Path] = None) -> Path:
    """Default folder for one symmetrised run."""
    base = Path(root) if root is not None else output_root()
    return base / "runs" / run_id
