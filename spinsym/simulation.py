"""
Symmetrised ensemble dynamics.

The nuclear space of each electron is reduced to blocks of collective
multiplicities (see :mod:`spinsym.symmetry`). Every pair of blocks (one per
electron) is solved independently, weighted by its degeneracy times its
dimension, and the weighted sum is normalised by the full dimension Z.

Blocks of the first electron are solved concurrently. Each block gets its own
jumped RNG stream and writes into its own slot, so results do not depend on
thread scheduling or on the number of workers.
"""
from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from spinsym.meta import make_run_id, run_metadata, write_json
from spinsym.observables import ObservableSeries
from spinsym.paths import run_folder
from spinsym.rng import ParallelRNG, Xoroshiro128Plus, fold_back, make_parallel
from spinsym.specs import ReducedSystem, SimulationSpec, SystemSpec
from spinsym.symmetry import BathReduction, block_size, reduce_bath, reduce_system, weight

logger = logging.getLogger(__name__)

ExactSolver = Callable[[ReducedSystem, SimulationSpec], ObservableSeries]
StochasticSolver = Callable[[ReducedSystem, SimulationSpec, Xoroshiro128Plus], ObservableSeries]

# Largest Z for which w * Z_current / Z is still computed without rounding.
FLOAT_EXACT_LIMIT = 2 ** 53


@dataclass
class SymmetrisedResult:
    """
    Result of :func:`run_symmetrised`.

    blocks holds one row per (i, j) block with its weight, dimension,
    fractional weight and the solver that handled it ("exact", "stochastic"
    or "pruned").
    """
    observables: ObservableSeries
    Z: int
    blocks: List[Dict[str, Any]] = field(default_factory=list)

    def blocks_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.blocks)

    def count(self, solver: str) -> int:
        return sum(1 for b in self.blocks if b["solver"] == solver)


def total_dimension(system: SystemSpec) -> int:
    """Full nuclear dimension over both electrons, as an exact integer."""
    return system.e1.dim * system.e2.dim


def check_supported(system: SystemSpec) -> None:
    for name, bath in (("e1", system.e1), ("e2", system.e2)):
        bad = sorted({g for g in bath.g_I if g != 2})
        if bad:
            raise NotImplementedError(
                f"Symmetrised dynamics is only implemented for spin-1/2 nuclei; "
                f"{name} has multiplicities {bad}."
            )


def _solve_block(
    i: int,
    col2: Tuple[int, ...],
    w2: int,
    red1: BathReduction,
    red2: BathReduction,
    system: SystemSpec,
    sim: SimulationSpec,
    Z: int,
    rng: Xoroshiro128Plus,
    exact_solver: ExactSolver,
    stochastic_solver: StochasticSolver,
) -> Tuple[ObservableSeries, Dict[str, Any]]:
    col1 = red1.column(i)
    w_k = weight(red1.n_bar, col1) * w2
    Z_current = block_size(col1) * block_size(col2)
    fraction = (w_k * Z_current) / Z

    if fraction <= sim.block_tol:
        res = ObservableSeries.allocate(sim.series_length)
        solver = "pruned"
    else:
        sys_new = reduce_system(system.hamiltonian, col1, red1.a_bar, col2, red2.a_bar)
        if Z_current <= sim.N_samples:
            res = exact_solver(sys_new, sim)
            solver = "exact"
        else:
            res = stochastic_solver(sys_new, sim, rng)
            solver = "stochastic"
        if len(res) != sim.series_length:
            raise ValueError(
                f"{solver} solver returned {len(res)} points, expected {sim.series_length}"
            )
        res = res.copy().scale(float(w_k * Z_current))

    logger.debug("block i=%d K1=%s K2=%s w=%d Z=%d -> %s", i, col1, col2, w_k, Z_current, solver)
    record = {
        "K1": " ".join(map(str, col1)),
        "K2": " ".join(map(str, col2)),
        "weight": w_k,
        "block_size": Z_current,
        "fraction": fraction,
        "solver": solver,
    }
    return res, record


def _run_inner(
    executor: ThreadPoolExecutor,
    pool: ParallelRNG,
    **kwargs: Any,
) -> List[Tuple[ObservableSeries, Dict[str, Any]]]:
    """Solve every first-electron block; slot i holds block i."""
    futures = [
        executor.submit(_solve_block, i, rng=pool[i], **kwargs)
        for i in range(len(pool))
    ]
    slots: List[Tuple[ObservableSeries, Dict[str, Any]]] = []
    try:
        for fut in futures:
            slots.append(fut.result())
    except BaseException:
        for fut in futures:
            fut.cancel()
        raise
    return slots


def run_symmetrised(
    system: SystemSpec,
    sim: SimulationSpec,
    rng: Xoroshiro128Plus,
    exact_solver: ExactSolver,
    stochastic_solver: StochasticSolver,
    *,
    output_folder: Optional[str | Path] = None,
    write: bool = False,
    tag: str = "symmetrised",
) -> SymmetrisedResult:
    """
    Ensemble-averaged dynamics over all symmetry blocks of both baths.

    Parameters
    ----------
    system : SystemSpec
        Both nuclear baths and the shared Hamiltonian parameters.
    sim : SimulationSpec
        Time grid, group counts M1/M2, the exact/stochastic threshold
        N_samples and the pruning tolerance block_tol.
    rng : Xoroshiro128Plus
        Sequential generator. Per-block streams are jumped from it and folded
        back after each outer iteration, so it is advanced in place.
    exact_solver, stochastic_solver : callable
        Block solvers. The stochastic one receives the block's private stream.
    output_folder : path, optional
        If given, observables, the block table and run metadata are written there.
    write : bool
        Write output even without ``output_folder``, into
        ``run_folder(make_run_id(tag))`` under the output root.
    tag : str
        Suffix of the generated run id.

    Returns
    -------
    SymmetrisedResult
        Normalised observables with kinetics derived, plus the block table.

    Raises
    ------
    NotImplementedError
        If any nucleus is not spin-1/2. Raised before any solver is called.
    """
    check_supported(system)

    Z = total_dimension(system)
    if Z > FLOAT_EXACT_LIMIT:
        warnings.warn(
            f"Total dimension Z={Z} exceeds 2**53; block fractions are rounded.",
            RuntimeWarning,
        )
    logger.info("Total nuclear dimension Z = %d", Z)

    red1 = reduce_bath(system.e1, sim.M1)
    red2 = reduce_bath(system.e2, sim.M2)
    C1 = red1.n_combinations
    C2 = red2.n_combinations
    logger.info("Blocks: %d x %d = %d", C1, C2, C1 * C2)

    res = ObservableSeries.allocate(sim.series_length)
    blocks: List[Dict[str, Any]] = []

    with ThreadPoolExecutor(max_workers=sim.n_workers) as executor:
        for j in range(C2):
            col2 = red2.column(j)
            w2 = weight(red2.n_bar, col2)

            pool = make_parallel(C1, rng)
            slots = _run_inner(
                executor,
                pool,
                col2=col2,
                w2=w2,
                red1=red1,
                red2=red2,
                system=system,
                sim=sim,
                Z=Z,
                exact_solver=exact_solver,
                stochastic_solver=stochastic_solver,
            )
            fold_back(pool, rng)

            for i, (res_current, record) in enumerate(slots):
                res.add(res_current)
                blocks.append({"i": i, "j": j, **record})

    res.scale(1.0 / Z)
    res.derive_kinetics(sim.dt, system.hamiltonian.kS, system.hamiltonian.kT)

    result = SymmetrisedResult(observables=res, Z=Z, blocks=blocks)
    logger.info(
        "Done: %d exact, %d stochastic, %d pruned",
        result.count("exact"), result.count("stochastic"), result.count("pruned"),
    )

    if output_folder is None and write:
        output_folder = run_folder(make_run_id(tag))
    if output_folder is not None:
        folder = write_result(result, Path(output_folder), system=system, sim=sim)
        logger.info("Wrote run output to %s", folder)

    return result


def write_result(
    result: SymmetrisedResult,
    folder: Path,
    *,
    system: SystemSpec,
    sim: SimulationSpec,
) -> Path:
    """Observables CSV + summary, per-block table and run metadata into ``folder``."""
    result.observables.save(folder)
    result.blocks_frame().to_csv(folder / "blocks.csv", index=False)
    write_json(folder / "run.json", {**run_metadata(system=system, simulation=sim), "Z": result.Z})
    return folder


def solve_unreduced(
    system: SystemSpec,
    sim: SimulationSpec,
    exact_solver: ExactSolver,
) -> ObservableSeries:
    """Reference path: exact solver on the full system, no symmetry reduction."""
    sys_full = ReducedSystem(e1=system.e1, e2=system.e2, hamiltonian=system.hamiltonian)
    res = exact_solver(sys_full, sim).copy()
    return res.derive_kinetics(sim.dt, system.hamiltonian.kS, system.hamiltonian.kT)
