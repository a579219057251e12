# spinsym/plots.py
from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import matplotlib.pyplot as plt

from spinsym.observables import ObservableSeries


def _ensure_dir(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _finish(out_png: str | Path | None, show: bool) -> None:
    plt.tight_layout()

    if out_png is not None:
        out_png = Path(out_png)
        _ensure_dir(out_png)
        plt.savefig(out_png, dpi=200)

    if show:
        plt.show()
    else:
        plt.close()


def plot_series(
    series: ObservableSeries,
    *,
    yields: bool = True,
    title: str | None = None,
    out_png: str | Path | None = None,
    show: bool = True,
) -> None:
    """
    Quick sanity plot: P_S(t), P_T(t) and, if derived, the cumulative yields.
    """
    if len(series) == 0:
        raise ValueError("Empty series.")

    t = series.time if series.time is not None else np.arange(len(series), dtype=float)

    plt.figure()
    plt.plot(t, series.singlet, label=r"$P_S(t)$")
    plt.plot(t, series.triplet, label=r"$P_T(t)$")
    if yields and series.singlet_yield is not None:
        plt.plot(t, series.singlet_yield, linestyle="--", label=r"$Y_S(t)$")
        plt.plot(t, series.triplet_yield, linestyle="--", label=r"$Y_T(t)$")
    plt.xlabel("t" if series.time is not None else "step")
    plt.ylabel("probability / yield")
    plt.title(title or "Symmetrised ensemble dynamics")
    plt.legend()

    _finish(out_png, show)


def plot_block_fractions(
    blocks: List[Dict[str, Any]],
    *,
    block_tol: float | None = None,
    title: str | None = None,
    out_png: str | Path | None = None,
    show: bool = True,
) -> None:
    """
    Fractional weight w*Z_current/Z per block against block dimension,
    coloured by the solver that handled the block.
    """
    if not blocks:
        raise ValueError("No blocks to plot.")

    grouped: dict[str, list[tuple[float, float]]] = defaultdict(list)
    for b in blocks:
        grouped[str(b["solver"])].append((float(b["block_size"]), float(b["fraction"])))

    plt.figure()
    for solver in sorted(grouped):
        xy = np.asarray(grouped[solver], dtype=float)
        plt.scatter(xy[:, 0], xy[:, 1], label=f"{solver} (n={len(xy)})", s=12)
    if block_tol is not None and block_tol > 0:
        plt.axhline(block_tol, linewidth=1, linestyle="--")
    plt.xscale("log")
    plt.yscale("log")
    plt.xlabel("block dimension")
    plt.ylabel("fractional weight")
    plt.title(title or "Block weights")
    plt.legend()

    _finish(out_png, show)
