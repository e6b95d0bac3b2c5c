"""
Monte Carlo refinement of the analytic probability of collision.

This is a stand-in for a trajectory Monte Carlo, not a physical model: the
"true" hit probability is the analytic Pc perturbed by a random factor in
[0.8, 1.2), and samples are Bernoulli trials at that probability. The
scatter points are cosmetic. A hit is always drawn inside the combined
hard-body radius and a miss always outside it, so the labels agree with the
geometry for anyone plotting them.
"""

import asyncio
import logging
import math
import threading
from typing import List, Optional

import numpy as np

from cdm_triage.errors import SimulationCancelled, SimulationError
from cdm_triage.models.event import CdmEvent
from cdm_triage.models.simulation import ScatterPoint, SimulationResult
from cdm_triage.random_source import RandomSource

log = logging.getLogger(__name__)

DEFAULT_SAMPLES = 5000
MAX_SCATTER_POINTS = 500
Z_95 = 1.96
# Samples drawn between cancellation checks.
BLOCK_SIZE = 10_000


class CancellationToken:
    """Lets a caller abandon an in-flight estimate."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def confidence_interval(pc: float, samples: int) -> tuple:
    """95% normal-approximation interval. The upper bound is not clamped to 1."""
    margin = Z_95 * math.sqrt(pc * (1.0 - pc) / samples)
    return max(0.0, pc - margin), pc + margin


class MonteCarloEstimator:
    """
    Refines `pc_analytic` by simulation.

    The estimator owns its RandomSource. Draws are serialized on the
    source's lock, so concurrent estimates never interleave generator state.
    """

    def __init__(self, random_source: Optional[RandomSource] = None):
        self.rng = random_source or RandomSource()

    async def estimate(
        self,
        event: CdmEvent,
        sample_count: int = DEFAULT_SAMPLES,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SimulationResult:
        """Run the simulation in a worker thread."""
        if sample_count <= 0:
            raise SimulationError(f"sample_count must be positive, got {sample_count}")
        token = cancel_token or CancellationToken()
        try:
            return await asyncio.to_thread(self._simulate, event, sample_count, token)
        except asyncio.CancelledError:
            # Stop the worker thread too, not just the awaiting task.
            token.cancel()
            raise

    def _simulate(
        self,
        event: CdmEvent,
        sample_count: int,
        token: CancellationToken,
    ) -> SimulationResult:
        with self.rng.lock:
            gen = self.rng.generator
            true_p = event.pc_analytic * gen.uniform(0.8, 1.2)
            hits = 0
            points: List[ScatterPoint] = []

            for start in range(0, sample_count, BLOCK_SIZE):
                if token.cancelled:
                    log.info("Monte Carlo for %s cancelled after %d samples", event.id, start)
                    raise SimulationCancelled(f"Estimate for {event.id} was cancelled")
                size = min(BLOCK_SIZE, sample_count - start)
                draws = gen.random(size) < true_p
                hits += int(np.count_nonzero(draws))

                wanted = min(size, MAX_SCATTER_POINTS - len(points))
                if wanted > 0:
                    points.extend(self._scatter(draws[:wanted], event, gen))

        pc = hits / sample_count
        ci_lower, ci_upper = confidence_interval(pc, sample_count)
        log.info(
            "Monte Carlo for %s: pc=%.3e (%d/%d hits), 95%% CI [%.3e, %.3e]",
            event.id, pc, hits, sample_count, ci_lower, ci_upper,
        )
        return SimulationResult(
            pc=pc,
            samples=sample_count,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            points=points,
        )

    @staticmethod
    def _scatter(
        hits: np.ndarray,
        event: CdmEvent,
        gen: np.random.Generator,
    ) -> List[ScatterPoint]:
        count = len(hits)
        angles = gen.uniform(0.0, 2.0 * math.pi, count)
        u = gen.random(count)
        radii = np.where(
            hits,
            u * event.hbr,
            event.hbr + u * event.miss_distance * 0.5,
        )
        xs = np.cos(angles) * radii
        ys = np.sin(angles) * radii
        return [
            ScatterPoint(x=float(x), y=float(y), hit=bool(h))
            for x, y, h in zip(xs, ys, hits)
        ]
