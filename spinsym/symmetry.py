"""
Permutation-symmetry reduction of spin-1/2 nuclear baths.

A group of n identical spin-1/2 nuclei couples to its electron only through
its total spin, so the 2^n-dimensional group space splits into blocks of
collective multiplicity k = n+1, n-1, ..., (1 or 2). Block k appears
weight(n, k) times. Summed over all blocks,

    sum_k weight(n, k) * k == 2**n

which is what makes the reduced ensemble average exact.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from spinsym.specs import HamiltonianParams, ReducedSystem, SpinBath


@dataclass(frozen=True)
class BathReduction:
    """
    Grouped bath and its combination matrix.

    K has shape (M, C): row i belongs to group i, column c is one combination
    of reduced multiplicities. An empty bath has M = 0 and a single column.
    """
    a_bar: Tuple[float, ...]
    n_bar: Tuple[int, ...]
    K: np.ndarray

    @property
    def n_combinations(self) -> int:
        return self.K.shape[1]

    def column(self, c: int) -> Tuple[int, ...]:
        return tuple(int(x) for x in self.K[:, c])


def shrink(
    a_iso: Sequence[float],
    target_count: int,
    original_count: int,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Group couplings into at most ``target_count`` sets of identical nuclei.

    Couplings are sorted and cut into contiguous groups of near-equal size.
    Each group is represented by its signed root-mean-square coupling, which
    keeps sum(n_bar * a_bar**2) equal to sum(a_iso**2).

    Returns
    -------
    a_bar : np.ndarray
        Representative coupling per group.
    n_bar : np.ndarray
        Member count per group; sums to ``original_count``.
    """
    a = np.asarray(a_iso, dtype=float).reshape(-1)
    if a.size != original_count:
        raise ValueError(f"Expected {original_count} couplings, got {a.size}")
    if original_count == 0:
        return np.zeros(0, dtype=float), np.zeros(0, dtype=np.int64)
    if target_count < 1:
        raise ValueError(f"target_count must be >= 1, got {target_count}")

    n_groups = min(int(target_count), int(original_count))
    groups = np.array_split(np.sort(a), n_groups)

    a_bar = np.empty(n_groups, dtype=float)
    n_bar = np.empty(n_groups, dtype=np.int64)
    for g, members in enumerate(groups):
        rms = float(np.sqrt(np.mean(members ** 2)))
        a_bar[g] = math.copysign(rms, float(members.mean()))
        n_bar[g] = members.size

    return a_bar, n_bar


def cartesian_product(n: Sequence[int]) -> np.ndarray:
    """
    All combinations of reduced multiplicities for groups of sizes ``n``.

    Group i takes the n[i]//2 + 1 values 1 + n[i]%2, 3 + n[i]%2, ..., n[i] + 1.
    Columns run with the first group varying fastest, e.g.

        cartesian_product([2, 2]) == [[1, 3, 1, 3],
                                      [1, 1, 3, 3]]
    """
    n = [int(x) for x in n]
    sizes = [x // 2 + 1 for x in n]
    combinations = math.prod(sizes)

    K = np.empty((len(n), combinations), dtype=np.int64)
    repeat = 1
    for i, (n_i, size) in enumerate(zip(n, sizes)):
        values = 2 * np.arange(size, dtype=np.int64) + 1 + n_i % 2
        block = np.repeat(values, repeat)
        K[i, :] = np.tile(block, combinations // block.size)
        repeat *= size

    return K


def nCr(n: int, r: int) -> int:
    """Binomial coefficient. Assumes 0 <= r <= n."""
    c = 1
    for i in range(1, min(n - r, r) + 1):
        c = c * (n - i + 1) // i
    return c


def weight(n: Sequence[int], k: Sequence[int]) -> int:
    """
    Number of times the block with multiplicities ``k`` occurs in the full
    space of groups with sizes ``n``.
    """
    w = 1
    for n_i, k_i in zip(n, k):
        n_i = int(n_i)
        k_i = int(k_i)
        numer = nCr(n_i, (n_i + k_i - 1) // 2) * k_i * 2
        w_i, rem = divmod(numer, n_i + k_i + 1)
        if rem:
            raise ArithmeticError(f"Inexact block weight for n={n_i}, k={k_i}")
        w *= w_i
    return w


def block_size(k: Sequence[int]) -> int:
    return math.prod(int(x) for x in k)


def reduce_bath(bath: SpinBath, target_count: int) -> BathReduction:
    """
    Shrink a bath to at most ``target_count`` groups and enumerate its blocks.

    An empty bath gives one trivial block of size 1 and weight 1.
    """
    if bath.n_nuclei == 0:
        return BathReduction(a_bar=(), n_bar=(), K=np.ones((0, 1), dtype=np.int64))

    a_bar, n_bar = shrink(bath.a_iso, target_count, bath.n_nuclei)
    return BathReduction(
        a_bar=tuple(float(a) for a in a_bar),
        n_bar=tuple(int(m) for m in n_bar),
        K=cartesian_product(n_bar),
    )


def reduce_system(
    hamiltonian: HamiltonianParams,
    g_I1: Sequence[int],
    a1_iso: Sequence[float],
    g_I2: Sequence[int],
    a2_iso: Sequence[float],
) -> ReducedSystem:
    """Build the isotropic reduced system for one block."""
    return ReducedSystem(
        e1=SpinBath(g_I=tuple(g_I1), a_iso=tuple(a1_iso), isotropic=True),
        e2=SpinBath(g_I=tuple(g_I2), a_iso=tuple(a2_iso), isotropic=True),
        hamiltonian=HamiltonianParams(
            J=hamiltonian.J, D=hamiltonian.D, kS=hamiltonian.kS, kT=hamiltonian.kT,
        ),
    )
