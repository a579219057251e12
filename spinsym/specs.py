from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class SpinBath:
    """
    Nuclear spins coupled to one electron.

    g_I[i] is the multiplicity 2I+1 of nucleus i, a_iso[i] its isotropic
    hyperfine coupling.
    """
    g_I: Tuple[int, ...] = ()
    a_iso: Tuple[float, ...] = ()
    isotropic: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "g_I", tuple(int(g) for g in self.g_I))
        object.__setattr__(self, "a_iso", tuple(float(a) for a in self.a_iso))
        if len(self.g_I) != len(self.a_iso):
            raise ValueError(
                f"g_I and a_iso must have equal lengths; got {len(self.g_I)} and {len(self.a_iso)}"
            )

    @property
    def n_nuclei(self) -> int:
        return len(self.g_I)

    @property
    def dim(self) -> int:
        """Nuclear Hilbert space dimension, exact."""
        return math.prod(self.g_I)


@dataclass(frozen=True)
class HamiltonianParams:
    J: float = 0.0    # exchange coupling
    D: float = 0.0    # dipolar coupling
    kS: float = 0.0   # singlet recombination rate
    kT: float = 0.0   # triplet recombination rate


@dataclass(frozen=True)
class SystemSpec:
    e1: SpinBath = field(default_factory=SpinBath)
    e2: SpinBath = field(default_factory=SpinBath)
    hamiltonian: HamiltonianParams = field(default_factory=HamiltonianParams)


@dataclass(frozen=True)
class SimulationSpec:
    """
    Time grid and reduction controls.

    M1, M2      : maximum number of coupling groups per bath
    N_samples   : blocks with dimension <= N_samples are solved exactly,
                  larger ones by trace sampling
    block_tol   : blocks with fractional weight <= block_tol are skipped
    n_workers   : threads for the inner block loop (None -> executor default)
    """
    dt: float = 1e-3
    t_end: float = 1.0
    M1: int = 4
    M2: int = 4
    N_samples: int = 1000
    block_tol: float = 0.0
    n_workers: Optional[int] = None

    @property
    def n_steps(self) -> int:
        return math.ceil((self.t_end + self.dt) / self.dt)

    @property
    def series_length(self) -> int:
        return self.n_steps + 1


@dataclass(frozen=True)
class ReducedSystem:
    """
    One symmetry block: shared Hamiltonian parameters plus reduced
    multiplicities K and representative couplings a_bar for each electron.
    """
    e1: SpinBath
    e2: SpinBath
    hamiltonian: HamiltonianParams

    @property
    def Z1(self) -> int:
        return self.e1.dim

    @property
    def Z2(self) -> int:
        return self.e2.dim

    @property
    def J(self) -> float:
        return self.hamiltonian.J

    @property
    def D(self) -> float:
        return self.hamiltonian.D

    @property
    def kS(self) -> float:
        return self.hamiltonian.kS

    @property
    def kT(self) -> float:
        return self.hamiltonian.kT
