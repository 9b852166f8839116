"""Injectable randomness for candidate and duty-length draws."""

from __future__ import annotations

import random
from collections.abc import Sequence
from typing import Protocol, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """The subset of :class:`random.Random` the assignment engine uses.

    Production wires :class:`random.SystemRandom`; tests pass a seeded
    :class:`random.Random` so picks are reproducible.
    """

    def choice(self, seq: Sequence[T]) -> T: ...

    def randint(self, a: int, b: int) -> int: ...


def system_random() -> RandomSource:
    return random.SystemRandom()
