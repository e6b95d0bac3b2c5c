"""
Synthetic event generator — seed data for demos and tests.

Output is fully determined by the RandomSource seed and `now`.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from cdm_triage.models.event import CdmEvent, GateResult, Gates, TriageLane, Vector3
from cdm_triage.models.policy import PolicyConfig
from cdm_triage.random_source import RandomSource
from cdm_triage.triage.classifier import classify
from cdm_triage.triage.queries import sort_by_risk

OBJECT_CATALOGUE = [
    "STARLINK-1002", "DEBRIS (FENGYUN)", "COSMOS 2251 DEB", "NOAA 17", "INTELSAT 901",
    "TITAN 3C TRANSTAGE", "SL-12 R/B", "PAYLOAD A", "UNKNOWN", "FALCON 9 DEB",
]

ID_BASE = 20250000


class EventGenerator:
    """Produces plausible, classified CdmEvents."""

    def __init__(self, random_source: RandomSource):
        self.rng = random_source

    def _pick_pair(self) -> tuple:
        obj1 = self.rng.choice(OBJECT_CATALOGUE)
        obj2 = self.rng.choice(OBJECT_CATALOGUE)
        while obj2 == obj1:
            obj2 = self.rng.choice(OBJECT_CATALOGUE)
        return obj1, obj2

    def _draw_pc(self) -> float:
        # Weighted: ~5% high risk, ~15% medium, the rest low.
        roll = self.rng.random()
        if roll > 0.95:
            return self.rng.uniform(1e-4, 1e-2)
        if roll > 0.8:
            return self.rng.uniform(1e-6, 1e-4)
        return self.rng.uniform(1e-9, 1e-6)

    def make_event(self, index: int, policy: PolicyConfig, now: datetime) -> CdmEvent:
        rng = self.rng
        obj1, obj2 = self._pick_pair()
        tca = now + timedelta(hours=rng.uniform(1, 72))
        creation_date = now - timedelta(hours=rng.uniform(1, 12))
        miss_distance = rng.uniform(10, 5000)
        hbr = rng.uniform(2, 15)
        pc_analytic = self._draw_pc()

        event = CdmEvent(
            id=f"CDM-{ID_BASE + index}",
            object1=obj1,
            object2=obj2,
            tca=tca,
            creation_date=creation_date,
            miss_distance=miss_distance,
            relative_speed=rng.uniform(5000, 15000),
            pc_analytic=pc_analytic,
            hbr=hbr,
            gates=Gates(
                eta=GateResult(value=rng.uniform(1, 20), reason="Size ratio high"),
                tangency=GateResult(value=rng.uniform(0.8, 1.0), reason="Geometry alignment"),
                conditioning=GateResult(value=rng.uniform(1, 10), reason="Poor covariance"),
            ),
            lane=TriageLane.ANALYTIC_OK,
            relative_position=rng.vector(miss_distance),
            relative_velocity=rng.vector(7000),
            covariance_diagonal=Vector3(
                x=rng.uniform(10, 100),
                y=rng.uniform(100, 1000),
                z=rng.uniform(10, 50),
            ),
        )
        return classify(event, policy, now)

    def generate(
        self,
        count: int,
        policy: PolicyConfig,
        now: Optional[datetime] = None,
    ) -> List[CdmEvent]:
        """Generate `count` classified events, highest analytic Pc first."""
        if now is None:
            now = datetime.now(timezone.utc)
        events = [self.make_event(i, policy, now) for i in range(count)]
        return sort_by_risk(events)
