"""Working-set queries used by the operator dashboard."""

from typing import Dict, Iterable, List, Optional

from cdm_triage.models.event import CdmEvent, TriageLane


def lane_counts(events: Iterable[CdmEvent]) -> Dict[str, int]:
    """Total plus per-lane counts."""
    counts = {lane.value: 0 for lane in TriageLane}
    total = 0
    for event in events:
        counts[event.lane.value] += 1
        total += 1
    counts["total"] = total
    return counts


def search_events(
    events: Iterable[CdmEvent],
    term: str = "",
    lane: Optional[TriageLane] = None,
) -> List[CdmEvent]:
    """Case-insensitive match on id or either object name, optionally by lane."""
    needle = term.lower()
    return [
        e for e in events
        if (
            needle in e.id.lower()
            or needle in e.object1.lower()
            or needle in e.object2.lower()
        )
        and (lane is None or e.lane == lane)
    ]


def nightmare_watch(events: Iterable[CdmEvent]) -> List[CdmEvent]:
    """High urgency and high risk: everything in ACTION_NOW."""
    return [e for e in events if e.lane == TriageLane.ACTION_NOW]


def sort_by_risk(events: Iterable[CdmEvent]) -> List[CdmEvent]:
    """Highest analytic Pc first."""
    return sorted(events, key=lambda e: e.pc_analytic, reverse=True)
