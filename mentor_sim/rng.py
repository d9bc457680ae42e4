"""Deterministic random utilities."""

from __future__ import annotations

import math
import random
from typing import Sequence, TypeVar

T = TypeVar("T")


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up, as the balance tables assume."""

    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


class DeterministicRNG:
    """Wraps :mod:`random` with deterministic replay support."""

    def __init__(self, seed: int) -> None:
        self._seed = seed & 0xFFFFFFFF
        # nosec B311 - deterministic pseudo-RNG acceptable for game mechanics
        self._random = random.Random(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def random(self) -> float:
        return self._random.random()

    def choice(self, seq: Sequence[T]) -> T:
        return self._random.choice(seq)

    def randint(self, a: int, b: int) -> int:
        return self._random.randint(a, b)

    def uniform(self, a: float, b: float) -> float:
        return self._random.uniform(a, b)

    def shuffle(self, seq) -> None:
        self._random.shuffle(seq)

    def sample(self, population, k: int):
        return self._random.sample(population, k)

    def roll_in_range(self, low: int, high: int) -> int:
        """Integer roll in ``[low, high]`` drawn from one uniform sample."""

        return round_half_up(low + self._random.random() * (high - low))

    def token(self, length: int = 4) -> str:
        alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
        return "".join(self._random.choice(alphabet) for _ in range(length))


__all__ = ["DeterministicRNG", "clamp", "round_half_up"]
