"""
Explicit pseudo-random source.

Every component that needs randomness takes one of these at construction.
There is no process-wide generator: tests seed their own source and get
exact, repeatable output.
"""

import math
import threading
from typing import Optional, Sequence, TypeVar

import numpy as np

from cdm_triage.models.event import Vector3

T = TypeVar("T")


class RandomSource:
    """Seeded wrapper around a numpy Generator."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.generator = np.random.default_rng(seed)
        # Held by callers that draw from the generator off the event loop.
        self.lock = threading.Lock()

    def random(self) -> float:
        return float(self.generator.random())

    def uniform(self, low: float, high: float) -> float:
        return float(self.generator.uniform(low, high))

    def choice(self, items: Sequence[T]) -> T:
        return items[int(self.generator.integers(0, len(items)))]

    def vector(self, scale: float) -> Vector3:
        """Random vector with each component in [-scale, scale)."""
        if not math.isfinite(scale):
            scale = 0.0
        return Vector3(
            x=self.uniform(-scale, scale),
            y=self.uniform(-scale, scale),
            z=self.uniform(-scale, scale),
        )
