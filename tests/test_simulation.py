import json

import numpy as np
import pandas as pd
import pytest

from spinsym.observables import ObservableSeries
from spinsym.rng import Xoroshiro128Plus
from spinsym.simulation import run_symmetrised, solve_unreduced, total_dimension
from spinsym.specs import SpinBath, SystemSpec

from tests.fixtures import (
    CountingExactSolver,
    CountingStochasticSolver,
    RampExactSolver,
    make_system,
    short_sim,
)


def seeded(w1=2024, w2=7):
    rng = Xoroshiro128Plus()
    rng.seed(w1, w2)
    return rng


def run(system, sim, rng=None, exact=None, stochastic=None, **kwargs):
    return run_symmetrised(
        system,
        sim,
        rng if rng is not None else seeded(),
        exact if exact is not None else CountingExactSolver(),
        stochastic if stochastic is not None else CountingStochasticSolver(),
        **kwargs,
    )


def test_series_length_from_time_grid():
    sim = short_sim()
    assert sim.n_steps == 11
    assert sim.series_length == 12


def test_unsupported_spin_is_fatal_before_any_solver_call():
    system = SystemSpec(e1=SpinBath(g_I=(2, 3), a_iso=(0.1, 0.2)))
    exact, stochastic = CountingExactSolver(), CountingStochasticSolver()
    with pytest.raises(NotImplementedError):
        run(system, short_sim(), exact=exact, stochastic=stochastic)
    assert exact.calls == [] and stochastic.calls == []


def test_total_dimension_is_exact_for_large_baths():
    system = make_system(a1=[0.1] * 70, a2=[0.2] * 40)
    assert total_dimension(system) == 2 ** 110


@pytest.mark.integration
def test_empty_baths_reduce_to_direct_exact_solve():
    system = make_system()
    sim = short_sim()
    exact = CountingExactSolver()

    result = run(system, sim, exact=RampExactSolver())
    direct = solve_unreduced(system, sim, RampExactSolver())

    assert result.Z == 1
    assert len(result.blocks) == 1
    assert result.blocks[0]["weight"] == 1 and result.blocks[0]["block_size"] == 1
    assert result.blocks[0]["solver"] == "exact"
    np.testing.assert_array_equal(result.observables.singlet, direct.singlet)
    np.testing.assert_array_equal(result.observables.triplet, direct.triplet)
    np.testing.assert_array_equal(result.observables.singlet_yield, direct.singlet_yield)

    run(system, sim, exact=exact)
    assert len(exact.calls) == 1
    assert exact.calls[0].e1.g_I == () and exact.calls[0].e2.g_I == ()


@pytest.mark.integration
@pytest.mark.parametrize(
    "a1, a2, M1, M2",
    [
        ([0.1, 0.2, 0.3], [0.4, 0.5], 8, 8),
        ([0.1, 0.2, 0.3], [0.4, 0.5], 1, 1),
        ([0.1] * 6, [], 2, 2),
        ([], [0.3, -0.2, 0.1, 0.05], 3, 2),
    ],
)
def test_unit_observable_is_preserved_by_normalisation(a1, a2, M1, M2):
    # sum over blocks of w * Z_current equals Z, so P_S = 1 in every block gives 1
    system = make_system(a1=a1, a2=a2)
    sim = short_sim(M1=M1, M2=M2)
    result = run(system, sim)

    assert result.Z == 2 ** (len(a1) + len(a2))
    assert sum(b["weight"] * b["block_size"] for b in result.blocks) == result.Z
    assert np.allclose(result.observables.singlet, 1.0)
    assert np.allclose(result.observables.triplet, 0.0)


@pytest.mark.integration
def test_every_outer_block_is_accumulated():
    system = make_system(a1=[0.1, 0.2], a2=[0.3, 0.4])
    result = run(system, short_sim(M1=1, M2=1))
    # two groups of two spins: 2 blocks per electron
    assert len(result.blocks) == 4
    assert sorted((b["i"], b["j"]) for b in result.blocks) == [(0, 0), (0, 1), (1, 0), (1, 1)]


@pytest.mark.integration
def test_pruned_blocks_are_zero_and_never_solved():
    system = make_system(a1=[0.1, 0.2], a2=[0.3])
    sim = short_sim(M1=1, block_tol=1.0)
    exact, stochastic = CountingExactSolver(), CountingStochasticSolver()

    result = run(system, sim, exact=exact, stochastic=stochastic)

    assert exact.calls == [] and stochastic.calls == []
    assert result.count("pruned") == len(result.blocks) == 2
    assert len(result.observables) == sim.series_length
    assert np.all(result.observables.singlet == 0.0)
    assert np.all(result.observables.triplet == 0.0)


@pytest.mark.integration
def test_partial_pruning_drops_small_blocks():
    # one group of two spins: singlet block (1/4 of Z) and triplet block (3/4)
    system = make_system(a1=[0.1, 0.2])
    sim = short_sim(M1=1, block_tol=0.5)
    exact = CountingExactSolver()

    result = run(system, sim, exact=exact)

    assert len(exact.calls) == 1
    assert exact.calls[0].e1.g_I == (3,)
    by_k = {b["K1"]: b for b in result.blocks}
    assert by_k["1"]["solver"] == "pruned"
    assert by_k["1"]["fraction"] == pytest.approx(0.25)
    assert by_k["3"]["solver"] == "exact"
    assert np.allclose(result.observables.singlet, 0.75)


@pytest.mark.integration
def test_solver_choice_follows_block_dimension():
    system = make_system(a1=[0.1] * 4, a2=[0.2] * 3)
    sim = short_sim(M1=1, M2=1, N_samples=6)
    exact, stochastic = CountingExactSolver(), CountingStochasticSolver()

    result = run(system, sim, exact=exact, stochastic=stochastic)

    n_small = sum(1 for b in result.blocks if b["block_size"] <= 6)
    assert len(exact.calls) == result.count("exact") == n_small
    assert len(stochastic.calls) == result.count("stochastic") == len(result.blocks) - n_small
    for sys_new in exact.calls:
        assert sys_new.Z1 * sys_new.Z2 <= 6
    for sys_new in stochastic.calls:
        assert sys_new.Z1 * sys_new.Z2 > 6


@pytest.mark.integration
def test_stochastic_blocks_get_distinct_streams():
    system = make_system(a1=[0.1] * 6, a2=[0.2] * 2)
    sim = short_sim(M1=2, M2=1, N_samples=0)
    stochastic = CountingStochasticSolver()

    result = run(system, sim, stochastic=stochastic)

    assert result.count("stochastic") == len(result.blocks)
    assert len(set(stochastic.first_draws)) == len(stochastic.first_draws)


@pytest.mark.integration
def test_results_do_not_depend_on_worker_count():
    system = make_system(a1=[0.1, 0.15, 0.2, 0.3, 0.35], a2=[0.4, 0.5, 0.6])
    outputs = []
    states = []
    for n_workers in (1, 4):
        rng = seeded()
        sim = short_sim(M1=3, M2=2, N_samples=2, n_workers=n_workers)
        result = run(system, sim, rng=rng)
        outputs.append(result.observables)
        states.append(rng.state)

    np.testing.assert_array_equal(outputs[0].singlet, outputs[1].singlet)
    np.testing.assert_array_equal(outputs[0].triplet, outputs[1].triplet)
    assert states[0] == states[1]


@pytest.mark.integration
def test_sequential_rng_is_advanced():
    rng = seeded()
    before = rng.state
    run(make_system(a1=[0.1, 0.2]), short_sim(M1=1, N_samples=0), rng=rng)
    assert rng.state != before


@pytest.mark.integration
def test_wrong_solver_length_is_rejected():
    def short_solver(sys_new, sim):
        return ObservableSeries.allocate(sim.series_length - 1)

    with pytest.raises(ValueError):
        run(make_system(a1=[0.1]), short_sim(), exact=short_solver)


@pytest.mark.integration
def test_worker_failure_propagates():
    def failing_solver(sys_new, sim):
        raise RuntimeError("solver blew up")

    with pytest.raises(RuntimeError, match="solver blew up"):
        run(make_system(a1=[0.1, 0.2, 0.3]), short_sim(M1=3), exact=failing_solver)


@pytest.mark.integration
def test_kinetics_are_derived_after_normalisation():
    system = make_system(a1=[0.1, 0.2], kS=2.0, kT=0.0)
    sim = short_sim(M1=1)
    result = run(system, sim)

    t = sim.dt * np.arange(sim.series_length)
    assert np.allclose(result.observables.time, t)
    assert np.allclose(result.observables.singlet_yield, 2.0 * t)
    assert np.allclose(result.observables.triplet_yield, 0.0)


@pytest.mark.integration
def test_output_folder_receives_observables_blocks_and_metadata(tmp_path):
    system = make_system(a1=[0.1, 0.2], a2=[0.3])
    out = tmp_path / "run1"
    result = run(system, short_sim(M1=1), output_folder=out)

    assert (out / "observables.csv").exists()
    blocks = pd.read_csv(out / "blocks.csv")
    assert len(blocks) == len(result.blocks)
    assert list(blocks.columns) == list(result.blocks_frame().columns)
    meta = json.loads((out / "run.json").read_text())
    assert meta["Z"] == 8
    assert meta["simulation"]["M1"] == 1
    assert meta["system"]["e1"]["g_I"] == [2, 2]


def test_large_total_dimension_warns():
    system = make_system(a1=[0.1] * 40, a2=[0.2] * 20)
    sim = short_sim(M1=1, M2=1, block_tol=1.0)
    with pytest.warns(RuntimeWarning):
        run(system, sim)


@pytest.mark.integration
def test_blocks_frame_has_one_row_per_block():
    system = make_system(a1=[0.1, 0.2], a2=[0.3])
    result = run(system, short_sim(M1=1, block_tol=0.5))

    df = result.blocks_frame()
    # singlet and triplet block of the pair, times the single block of e2
    assert len(df) == len(result.blocks) == 2
    assert {"i", "j", "K1", "K2", "weight", "block_size", "fraction", "solver"} <= set(df.columns)
    assert (df["weight"] * df["block_size"]).sum() == result.Z
    assert df["fraction"].sum() == pytest.approx(1.0)
    assert set(df["solver"]) == {"exact", "pruned"}


@pytest.mark.integration
def test_write_without_folder_uses_output_root(tmp_path, monkeypatch):
    monkeypatch.setenv("SPINSYM_OUTPUT_ROOT", str(tmp_path))
    system = make_system(a1=[0.1, 0.2])
    result = run(system, short_sim(M1=1), write=True, tag="default")

    runs = list((tmp_path / "runs").iterdir())
    assert len(runs) == 1
    assert runs[0].name.endswith("_default")
    assert (runs[0] / "observables.csv").exists()
    assert json.loads((runs[0] / "run.json").read_text())["Z"] == result.Z


def test_nothing_is_written_by_default(tmp_path, monkeypatch):
    monkeypatch.setenv("SPINSYM_OUTPUT_ROOT", str(tmp_path))
    run(make_system(a1=[0.1]), short_sim(M1=1))
    assert list(tmp_path.iterdir()) == []
