# spinsym/rng.py
from __future__ import annotations

import math
import os
import struct
import time
from dataclasses import dataclass
from typing import Tuple


MASK64 = (1 << 64) - 1

# Unsigned views of the signed jump constants -4707382666127344949 and
# -2852180941702784734.
JUMP = (0xBEAC0467EBA5FACB, 0xD86B048B86AA9922)

_ONE_EXPONENT = 1023 << 52  # exponent bits of 1.0


def _rotl(x: int, k: int) -> int:
    return ((x << k) | (x >> (64 - k))) & MASK64


def _to_signed(x: int, bits: int = 64) -> int:
    x &= (1 << bits) - 1
    return x - (1 << bits) if x >> (bits - 1) else x


class Xoroshiro128Plus:
    """
    xoroshiro128+ generator with an explicit, exclusively owned state.

    Every draw mutates the state in place. Do not share one instance between
    threads: derive independent streams with :func:`make_parallel`, which
    relies on :meth:`jump` (equivalent to 2^64 calls to :meth:`next`).

    The constructor takes the raw state and does not jump; use :meth:`seed`
    for user seeds.
    """

    __slots__ = ("s1", "s2", "_stored_normal", "_have_stored_normal")

    def __init__(self, state: Tuple[int, int] = (123456789, 987654321)):
        self.s1 = int(state[0]) & MASK64
        self.s2 = int(state[1]) & MASK64
        self._stored_normal = 0.0
        self._have_stored_normal = False

    # --- state handling ---

    @property
    def state(self) -> Tuple[int, int]:
        return self.s1, self.s2

    def copy(self) -> "Xoroshiro128Plus":
        other = Xoroshiro128Plus(self.state)
        other._stored_normal = self._stored_normal
        other._have_stored_normal = self._have_stored_normal
        return other

    def seed(self, w1: int, w2: int) -> None:
        """Set the state from two 64-bit words (signed accepted), then jump once."""
        self.s1 = int(w1) & MASK64
        self.s2 = int(w2) & MASK64
        self._have_stored_normal = False
        # decorrelates weak seeds such as small integers
        self.jump()

    def set_random_seed(self) -> None:
        """Seed from OS entropy mixed with a clock count."""
        clock = time.perf_counter_ns() & MASK64
        w1, w2 = struct.unpack("<QQ", os.urandom(16))
        self.seed(w1 ^ clock, w2 ^ clock)

    # --- core ---

    def next(self) -> int:
        """Advance the state and return an unsigned 64-bit integer."""
        s1, s2 = self.s1, self.s2
        res = (s1 + s2) & MASK64
        s2 ^= s1
        self.s1 = _rotl(s1, 55) ^ s2 ^ ((s2 << 14) & MASK64)
        self.s2 = _rotl(s2, 36)
        return res

    def jump(self) -> None:
        t1 = 0
        t2 = 0
        for c in JUMP:
            for b in range(64):
                if (c >> b) & 1:
                    t1 ^= self.s1
                    t2 ^= self.s2
                self.next()
        self.s1 = t1
        self.s2 = t2

    def int_8(self) -> int:
        """Signed 64-bit integer."""
        return _to_signed(self.next(), 64)

    def int_4(self) -> int:
        """Signed 32-bit integer (low word of a draw)."""
        return _to_signed(self.next(), 32)

    # --- continuous distributions ---

    def unif_01(self) -> float:
        """Uniform double in [0, 1) built from the top 52 bits of a draw."""
        x = _ONE_EXPONENT | (self.next() >> 12)
        return struct.unpack("<d", struct.pack("<Q", x))[0] - 1.0

    def two_normals(self) -> Tuple[float, float]:
        """Two independent N(0,1) variates (Marsaglia polar method)."""
        while True:
            u = 2.0 * self.unif_01() - 1.0
            v = 2.0 * self.unif_01() - 1.0
            sum_sq = u * u + v * v
            if 0.0 < sum_sq < 1.0:
                break
        f = math.sqrt(-2.0 * math.log(sum_sq) / sum_sq)
        return u * f, v * f

    def normal(self) -> float:
        if self._have_stored_normal:
            self._have_stored_normal = False
            return self._stored_normal
        x, y = self.two_normals()
        self._stored_normal = y
        self._have_stored_normal = True
        return x

    def exponential(self, rate: float) -> float:
        # 1 - U lies in (0, 1]
        return -math.log(1.0 - self.unif_01()) / rate

    # --- discrete distributions ---

    def poisson_knuth(self, lam: float) -> int:
        """Knuth's multiplication method. Accurate for small lam only."""
        expl = math.exp(-lam)
        k = 0
        p = self.unif_01()
        while p > expl:
            k += 1
            p *= self.unif_01()
        return k

    def poisson_reject(self, lam: float) -> int:
        """
        Transformed rejection with squeeze (PTRS).

        W. Hoermann, Insurance: Mathematics and Economics 12, 39-45 (1993).
        Intended for lam >= 10.
        """
        sqrt_lam = math.sqrt(lam)
        log_lam = math.log(lam)

        b = 0.931 + 2.53 * sqrt_lam
        a = -0.059 + 0.02483 * b
        invalpha = 1.1239 + 1.1328 / (b - 3.4)
        vr = 0.9277 - 3.6224 / (b - 2.0)

        while True:
            U = self.unif_01() - 0.5
            V = 1.0 - self.unif_01()
            us = 0.5 - abs(U)
            k = math.floor((2.0 * a / us + b) * U + lam + 0.43)

            if us >= 0.07 and V <= vr:
                return k
            if k < 0 or (us < 0.013 and V > us):
                continue
            if (math.log(V) + math.log(invalpha) - math.log(a / (us * us) + b)) <= (
                -lam + k * log_lam - math.lgamma(k + 1.0)
            ):
                return k

    def poisson(self, lam: float) -> int:
        if lam < 10:
            return self.poisson_knuth(lam)
        return self.poisson_reject(lam)

    # --- geometric sampling ---

    def _unit_disc_pair(self, allow_origin: bool) -> Tuple[float, float, float]:
        while True:
            u = 2.0 * self.unif_01() - 1.0
            v = 2.0 * self.unif_01() - 1.0
            sum_sq = u * u + v * v
            if sum_sq <= 1.0 and (allow_origin or sum_sq > 0.0):
                return u, v, sum_sq

    def circle(self, radius: float) -> Tuple[float, float]:
        """Uniform point on a circle of the given radius."""
        u, v, sum_sq = self._unit_disc_pair(allow_origin=False)
        x = (u * u - v * v) / sum_sq
        y = 2.0 * u * v / sum_sq
        return radius * x, radius * y

    def sphere(self, radius: float) -> Tuple[float, float, float]:
        """Uniform point on a sphere of the given radius (Marsaglia 1972)."""
        u, v, sum_sq = self._unit_disc_pair(allow_origin=True)
        root = math.sqrt(1.0 - sum_sq)
        return (
            radius * 2.0 * u * root,
            radius * 2.0 * v * root,
            radius * (1.0 - 2.0 * sum_sq),
        )

    def __repr__(self) -> str:
        return f"Xoroshiro128Plus(state=({self.s1:#018x}, {self.s2:#018x}))"


@dataclass(frozen=True)
class ParallelRNG:
    """
    Mutually non-overlapping generators for concurrent use.

    Stream k is the seed generator jumped k+1 times, so each stream owns a
    disjoint window of 2^64 draws. Hand stream k to exactly one worker.
    """
    rngs: Tuple[Xoroshiro128Plus, ...]

    def __len__(self) -> int:
        return len(self.rngs)

    def __getitem__(self, k: int) -> Xoroshiro128Plus:
        return self.rngs[k]


def make_parallel(n: int, rng: Xoroshiro128Plus) -> ParallelRNG:
    """
    Deterministically derive ``n`` independent streams from ``rng``.

    ``rng`` itself is left untouched; call :func:`fold_back` after the
    concurrent region to move the sequential stream on.
    """
    if n < 1:
        raise ValueError(f"make_parallel: n must be >= 1, got {n}")

    rngs = []
    current = rng.copy()
    for _ in range(n):
        current.jump()
        # a cached normal belongs to the parent stream
        current._have_stored_normal = False
        rngs.append(current)
        current = current.copy()
    return ParallelRNG(rngs=tuple(rngs))


def fold_back(pool: ParallelRNG, rng: Xoroshiro128Plus) -> None:
    """Xor every pool member's state into ``rng`` (in place)."""
    for member in pool.rngs:
        rng.s1 ^= member.s1
        rng.s2 ^= member.s2
