# spinsym/meta.py
from __future__ import annotations

import datetime
import json
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0).isoformat()


def python_info() -> str:
    return sys.version


def spec_to_jsonable(spec: Any) -> Dict[str, Any]:
    """
    JSON-safe dump of spec dataclasses (handles nesting, tuples, numpy scalars).
    """
    def conv(x: Any) -> Any:
        if is_dataclass(x):
            return {k: conv(v) for k, v in asdict(x).items()}
        if isinstance(x, dict):
            return {str(k): conv(v) for k, v in x.items()}
        if isinstance(x, (list, tuple)):
            return [conv(v) for v in x]
        if hasattr(x, "item"):
            return x.item()
        return x

    return conv(spec)


def run_metadata(**specs: Any) -> Dict[str, Any]:
    """Metadata block written next to the observables of a run."""
    meta: Dict[str, Any] = {"created_utc": utc_now_iso(), "python": python_info()}
    for name, spec in specs.items():
        meta[name] = spec_to_jsonable(spec)
    return meta


def make_run_id(tag: str) -> str:
    ts = utc_now_iso().replace(":", "-")
    return f"{ts}_{tag}"


def write_json(path: Path, obj: Any) -> None:
    """Write ``obj`` as indented JSON, converting specs and numpy scalars first."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(spec_to_jsonable(obj), indent=2, sort_keys=True))
