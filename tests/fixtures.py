# tests/fixtures.py
import threading

import numpy as np

from spinsym.observables import ObservableSeries
from spinsym.specs import HamiltonianParams, SimulationSpec, SpinBath, SystemSpec


def spin_half_bath(a_iso):
    """Bath of spin-1/2 nuclei with the given couplings."""
    a_iso = tuple(float(a) for a in a_iso)
    return SpinBath(g_I=(2,) * len(a_iso), a_iso=a_iso)


def make_system(a1=(), a2=(), **ham):
    return SystemSpec(
        e1=spin_half_bath(a1),
        e2=spin_half_bath(a2),
        hamiltonian=HamiltonianParams(**{"J": 0.1, "D": -0.2, "kS": 1.0, "kT": 0.5, **ham}),
    )


def short_sim(**overrides):
    # n_steps = ceil((2.5 + 0.25) / 0.25) = 11 -> series length 12
    base = dict(dt=0.25, t_end=2.5, M1=8, M2=8, N_samples=10_000, block_tol=0.0)
    base.update(overrides)
    return SimulationSpec(**base)


class CountingExactSolver:
    """Returns P_S = 1, P_T = 0 and records every reduced system it sees."""

    def __init__(self):
        self._lock = threading.Lock()
        self.calls = []

    def __call__(self, sys_new, sim):
        with self._lock:
            self.calls.append(sys_new)
        n = sim.series_length
        return ObservableSeries(singlet=np.ones(n), triplet=np.zeros(n))


class CountingStochasticSolver:
    """Fills P_S with uniform draws from the block's stream."""

    def __init__(self):
        self._lock = threading.Lock()
        self.calls = []
        self.first_draws = []

    def __call__(self, sys_new, sim, rng):
        draws = np.array([rng.unif_01() for _ in range(sim.series_length)])
        with self._lock:
            self.calls.append(sys_new)
            self.first_draws.append(draws[0])
        return ObservableSeries(singlet=draws, triplet=1.0 - draws)


class RampExactSolver:
    """Deterministic, system-dependent output: P_S(t_k) = 1 / (1 + k * Z1 * Z2)."""

    def __call__(self, sys_new, sim):
        k = np.arange(sim.series_length, dtype=float)
        singlet = 1.0 / (1.0 + k * sys_new.Z1 * sys_new.Z2)
        return ObservableSeries(singlet=singlet, triplet=1.0 - singlet)
