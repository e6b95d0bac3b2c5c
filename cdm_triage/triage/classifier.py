"""
Lane Classifier — maps (event, policy) to a re-triaged event.

Behavioral Contract:
- Pure and total: never raises, never touches the store
- Gate values are never changed; only the `passed` flags and `lane` are recomputed
- Escalation is monotonic within one evaluation
- NaN anywhere compares false: a NaN gate fails, a NaN Pc never escalates by itself
- Re-running with the same inputs and the same `now` returns an equal event
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from cdm_triage.models.event import CdmEvent, Gates, TriageLane
from cdm_triage.models.policy import PolicyConfig

# Analytic Pc above which an event inside the warning window needs action.
ACTION_PC_FLOOR = 1e-3


def hours_to_tca(event: CdmEvent, now: Optional[datetime] = None) -> float:
    """Hours from `now` until closest approach. Negative for past events."""
    if now is None:
        now = datetime.now(timezone.utc)
    return (event.tca - now).total_seconds() / 3600.0


def _evaluate_gates(gates: Gates, policy: PolicyConfig) -> Gates:
    return Gates(
        eta=gates.eta.model_copy(
            update={"passed": gates.eta.value < policy.eta_threshold}
        ),
        tangency=gates.tangency.model_copy(
            update={"passed": gates.tangency.value < policy.tangency_threshold}
        ),
        conditioning=gates.conditioning.model_copy(
            update={"passed": gates.conditioning.value < policy.conditioning_threshold}
        ),
    )


def classify(
    event: CdmEvent,
    policy: PolicyConfig,
    now: Optional[datetime] = None,
) -> CdmEvent:
    """Recompute gate outcomes and the triage lane of one event."""
    gates = _evaluate_gates(event.gates, policy)
    hours = hours_to_tca(event, now)
    in_warning_window = hours < policy.warning_time_threshold

    lane = TriageLane.ANALYTIC_OK

    if event.pc_analytic >= policy.pc_red_threshold or not gates.all_passed:
        lane = lane.escalate(TriageLane.MC_REQUIRED)

    if event.pc_analytic > ACTION_PC_FLOOR and in_warning_window:
        lane = lane.escalate(TriageLane.ACTION_NOW)

    # A refined estimate overrides the analytic evidence.
    if (
        event.pc_mc is not None
        and event.pc_mc > policy.pc_red_threshold
        and in_warning_window
    ):
        lane = TriageLane.ACTION_NOW

    return event.model_copy(update={"gates": gates, "lane": lane})


def reclassify_all(
    events: Iterable[CdmEvent],
    policy: PolicyConfig,
    now: Optional[datetime] = None,
) -> List[CdmEvent]:
    """
    Re-triage a whole working set under `policy`.

    Must be run whenever the policy changes. All events are judged against
    the same instant.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    return [classify(e, policy, now) for e in events]
