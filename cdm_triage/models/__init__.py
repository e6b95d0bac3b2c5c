"""CDM triage data models."""

from cdm_triage.models.event import (
    CdmEvent,
    GateResult,
    Gates,
    TriageLane,
    Vector3,
)
from cdm_triage.models.ingestion import IngestionConfig, IngestionResult, RowRejection
from cdm_triage.models.policy import DEFAULT_POLICY, PolicyConfig
from cdm_triage.models.simulation import ScatterPoint, SimulationResult

__all__ = [
    "CdmEvent",
    "DEFAULT_POLICY",
    "GateResult",
    "Gates",
    "IngestionConfig",
    "IngestionResult",
    "PolicyConfig",
    "RowRejection",
    "ScatterPoint",
    "SimulationResult",
    "TriageLane",
    "Vector3",
]
