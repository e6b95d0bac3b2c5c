"""
Triage Service — wires ingestion, classification, simulation and storage.

Every path that changes an event goes through the classifier before the
store sees it:
  import    -> parse -> classify -> batched write
  policy    -> reclassify_all -> write
  refine    -> Monte Carlo -> copy with pc_mc -> classify -> write
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from cdm_triage.errors import EventNotFound
from cdm_triage.generator.synthetic import EventGenerator
from cdm_triage.ingestion.pipeline import ByteSource, CsvIngestionPipeline, ProgressCallback
from cdm_triage.models.event import CdmEvent, TriageLane
from cdm_triage.models.ingestion import IngestionConfig, IngestionResult
from cdm_triage.models.policy import DEFAULT_POLICY, PolicyConfig
from cdm_triage.models.simulation import SimulationResult
from cdm_triage.random_source import RandomSource
from cdm_triage.settings import TriageSettings
from cdm_triage.simulation.monte_carlo import CancellationToken, MonteCarloEstimator
from cdm_triage.store.event_store import EventStore, InMemoryEventStore
from cdm_triage.triage.classifier import classify, reclassify_all
from cdm_triage.triage.queries import lane_counts, nightmare_watch, search_events, sort_by_risk

log = logging.getLogger(__name__)


def refine(
    event: CdmEvent,
    policy: PolicyConfig,
    result: SimulationResult,
    now: Optional[datetime] = None,
) -> CdmEvent:
    """Attach a Monte Carlo estimate and re-triage. Identity is unchanged."""
    return classify(event.model_copy(update={"pc_mc": result.pc}), policy, now)


class TriageService:
    """Operator-facing operations over the stored working set."""

    def __init__(
        self,
        store: Optional[EventStore] = None,
        policy: Optional[PolicyConfig] = None,
        settings: Optional[TriageSettings] = None,
    ):
        self.settings = settings or TriageSettings()
        self.store = store or InMemoryEventStore()
        self.policy = policy or DEFAULT_POLICY
        # Separate sources so that imports never perturb simulation draws.
        seed = self.settings.seed
        self._generator_rng = RandomSource(seed)
        self._import_rng = RandomSource(None if seed is None else seed + 1)
        self.estimator = MonteCarloEstimator(RandomSource(None if seed is None else seed + 2))

    # --- Working set ---

    def list_events(
        self,
        term: str = "",
        lane: Optional[TriageLane] = None,
    ) -> List[CdmEvent]:
        return sort_by_risk(search_events(self.store.fetch_all(), term, lane))

    def get_event(self, event_id: str) -> CdmEvent:
        event = self.store.get(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event

    def stats(self) -> Dict[str, int]:
        return lane_counts(self.store.fetch_all())

    def nightmare_watch(self) -> List[CdmEvent]:
        return sort_by_risk(nightmare_watch(self.store.fetch_all()))

    def clear(self) -> None:
        self.store.clear()
        log.info("Event store cleared")

    # --- Seeding ---

    def seed(self, count: int, now: Optional[datetime] = None) -> List[CdmEvent]:
        """Write `count` synthetic events."""
        events = EventGenerator(self._generator_rng).generate(count, self.policy, now)
        self.store.bulk_upsert(events)
        log.info("Seeded %d synthetic events", len(events))
        return events

    def seed_if_empty(self) -> int:
        """Populate an empty store with demo data. Returns the number written."""
        if self.store.count() > 0 or self.settings.seed_events == 0:
            return 0
        return len(self.seed(self.settings.seed_events))

    # --- Policy ---

    def set_policy(self, policy: PolicyConfig) -> None:
        """Replace the policy. Stored lanes are stale until `apply_policy` runs."""
        self.policy = policy

    def apply_policy(
        self,
        policy: Optional[PolicyConfig] = None,
        now: Optional[datetime] = None,
    ) -> List[CdmEvent]:
        """Re-triage every stored event and persist the result."""
        if policy is not None:
            self.policy = policy
        events = reclassify_all(self.store.fetch_all(), self.policy, now)
        batch_size = self.settings.batch_size
        for start in range(0, len(events), batch_size):
            self.store.bulk_upsert(events[start:start + batch_size])
        log.info("Policy applied to %d events: %s", len(events), lane_counts(events))
        return events

    # --- Import ---

    def make_pipeline(self, clock=None) -> CsvIngestionPipeline:
        return CsvIngestionPipeline(
            store=self.store,
            policy=self.policy,
            config=IngestionConfig(batch_size=self.settings.batch_size),
            random_source=self._import_rng,
            clock=clock,
        )

    async def import_stream(
        self,
        byte_stream: ByteSource,
        total_bytes: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionResult:
        return await self.make_pipeline().ingest(byte_stream, total_bytes, on_progress)

    async def import_file(
        self,
        path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionResult:
        return await self.make_pipeline().ingest_file(
            path, on_progress, chunk_size=self.settings.chunk_size
        )

    # --- Refinement ---

    async def refine_event(
        self,
        event_id: str,
        sample_count: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[CdmEvent, SimulationResult]:
        """Run Monte Carlo on one event, re-triage it and persist the copy."""
        event = self.get_event(event_id)
        result = await self.estimator.estimate(
            event,
            self.settings.mc_samples if sample_count is None else sample_count,
            cancel_token,
        )
        updated = refine(event, self.policy, result)
        self.store.bulk_upsert([updated])
        log.info(
            "Refined %s: pc_mc=%.3e, lane %s -> %s",
            event_id, result.pc, event.lane.value, updated.lane.value,
        )
        return updated, result
