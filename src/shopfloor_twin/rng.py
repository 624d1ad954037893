"""Deterministic random source.

Every random draw in the twin goes through a ``DeterministicRandom`` instance
so that simulation runs and tests are reproducible for a given seed. The
generator is a 32-bit linear congruential generator and never touches the
wall clock or OS entropy.
"""

import threading
from typing import Sequence, TypeVar

T = TypeVar("T")

# Numerical Recipes LCG constants
LCG_A = 1664525
LCG_C = 1013904223
LCG_M = 2 ** 32

DEFAULT_SEED = 42


class DeterministicRandom:
    """Seeded LCG shared by the scheduler, predictor and admin hooks.

    All draws are serialized behind one lock so that callers on different
    threads consume the sequence one value at a time.
    """

    def __init__(self, seed: int = DEFAULT_SEED):
        self._lock = threading.Lock()
        self._state = seed % LCG_M

    def set_seed(self, seed: int) -> None:
        """Reset the generator state."""
        with self._lock:
            self._state = seed % LCG_M

    def get_state(self) -> int:
        with self._lock:
            return self._state

    def next_float(self) -> float:
        """Return a float in [0, 1)."""
        with self._lock:
            self._state = (LCG_A * self._state + LCG_C) % LCG_M
            return self._state / LCG_M

    def next_int(self, min_value: int, max_value: int) -> int:
        """Return an integer in [min_value, max_value], both inclusive."""
        if max_value < min_value:
            raise ValueError(f"Empty range [{min_value}, {max_value}]")
        return int(self.next_float() * (max_value - min_value + 1)) + min_value

    def next_float_range(self, min_value: float, max_value: float) -> float:
        """Return a float in [min_value, max_value)."""
        return self.next_float() * (max_value - min_value) + min_value

    def chance(self, probability: float) -> bool:
        return self.next_float() < probability

    def pick(self, items: Sequence[T]) -> T:
        """Return a uniformly chosen element of a non-empty sequence."""
        if not items:
            raise ValueError("Cannot pick from an empty sequence")
        return items[self.next_int(0, len(items) - 1)]

