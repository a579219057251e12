from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
from scipy.integrate import cumulative_trapezoid

from spinsym.meta import write_json


@dataclass
class ObservableSeries:
    """
    Time series accumulated over symmetry blocks.

    The solvers fill the singlet and triplet probabilities; time and product
    yields are only populated by :meth:`derive_kinetics`. All arrays have
    length n_steps + 1.
    """
    singlet: np.ndarray                      # P_S(t)
    triplet: np.ndarray                      # P_T(t)
    time: Optional[np.ndarray] = None
    singlet_yield: Optional[np.ndarray] = None
    triplet_yield: Optional[np.ndarray] = None

    @classmethod
    def allocate(cls, n: int) -> "ObservableSeries":
        return cls(singlet=np.zeros(n, dtype=float), triplet=np.zeros(n, dtype=float))

    def __len__(self) -> int:
        return int(self.singlet.shape[0])

    def fill(self, value: float) -> "ObservableSeries":
        self.singlet.fill(value)
        self.triplet.fill(value)
        return self

    def scale(self, factor: float) -> "ObservableSeries":
        self.singlet *= factor
        self.triplet *= factor
        return self

    def add(self, other: "ObservableSeries") -> "ObservableSeries":
        if len(other) != len(self):
            raise ValueError(f"Series length mismatch: {len(self)} vs {len(other)}")
        self.singlet += other.singlet
        self.triplet += other.triplet
        return self

    def copy(self) -> "ObservableSeries":
        return ObservableSeries(
            singlet=self.singlet.copy(),
            triplet=self.triplet.copy(),
            time=None if self.time is None else self.time.copy(),
            singlet_yield=None if self.singlet_yield is None else self.singlet_yield.copy(),
            triplet_yield=None if self.triplet_yield is None else self.triplet_yield.copy(),
        )

    def derive_kinetics(self, dt: float, kS: float, kT: float) -> "ObservableSeries":
        """
        Cumulative product yields

            Y_S(t) = kS * int_0^t P_S(s) ds,   Y_T(t) = kT * int_0^t P_T(s) ds

        by the trapezoidal rule on the uniform grid t = 0, dt, 2 dt, ...
        """
        n = len(self)
        self.time = dt * np.arange(n, dtype=float)
        self.singlet_yield = kS * cumulative_trapezoid(self.singlet, dx=dt, initial=0)
        self.triplet_yield = kT * cumulative_trapezoid(self.triplet, dx=dt, initial=0)
        return self

    @property
    def singlet_yield_total(self) -> float:
        return float(self.singlet_yield[-1]) if self.singlet_yield is not None else float("nan")

    @property
    def triplet_yield_total(self) -> float:
        return float(self.triplet_yield[-1]) if self.triplet_yield is not None else float("nan")

    def to_frame(self) -> pd.DataFrame:
        cols = {
            "time": self.time if self.time is not None else np.arange(len(self), dtype=float),
            "singlet": self.singlet,
            "triplet": self.triplet,
        }
        if self.singlet_yield is not None:
            cols["singlet_yield"] = self.singlet_yield
        if self.triplet_yield is not None:
            cols["triplet_yield"] = self.triplet_yield
        return pd.DataFrame(cols)

    def save(self, folder: str | Path, *, stem: str = "observables") -> Path:
        """Write ``<stem>.csv`` (series) and ``<stem>_summary.json`` (final yields)."""
        folder = Path(folder)
        folder.mkdir(parents=True, exist_ok=True)
        out_csv = folder / f"{stem}.csv"
        self.to_frame().to_csv(out_csv, index=False)
        write_json(
            folder / f"{stem}_summary.json",
            {
                "n_points": len(self),
                "singlet_yield": self.singlet_yield_total,
                "triplet_yield": self.triplet_yield_total,
            },
        )
        return out_csv

