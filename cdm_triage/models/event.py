"""Conjunction event — the central record flowing through triage."""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class TriageLane(str, Enum):
    """Triage lanes, declared in increasing order of severity."""
    ANALYTIC_OK = "ANALYTIC_OK"    # Analytic Pc is trustworthy and low
    MC_REQUIRED = "MC_REQUIRED"    # Needs Monte Carlo refinement
    ACTION_NOW = "ACTION_NOW"      # High risk inside the warning window

    @property
    def severity(self) -> int:
        return list(TriageLane).index(self)

    # Lanes compare by severity, not by name, so max() escalates.
    def __lt__(self, other):
        if isinstance(other, TriageLane):
            return self.severity < other.severity
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, TriageLane):
            return self.severity <= other.severity
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, TriageLane):
            return self.severity > other.severity
        return NotImplemented

    def __ge__(self, other):
        if isinstance(other, TriageLane):
            return self.severity >= other.severity
        return NotImplemented

    def escalate(self, other: "TriageLane") -> "TriageLane":
        """Return the more severe of the two lanes."""
        return other if other.severity > self.severity else self


class Vector3(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    x: float
    y: float
    z: float


class GateResult(BaseModel):
    """One diagnostic check: statistic, outcome, and why."""
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    value: float
    passed: bool = True
    reason: str = ""


class Gates(BaseModel):
    """The three gates every event carries. Never partial."""
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    eta: GateResult            # Object size ratio
    tangency: GateResult       # Encounter geometry alignment
    conditioning: GateResult   # Covariance conditioning

    @property
    def all_passed(self) -> bool:
        return self.eta.passed and self.tangency.passed and self.conditioning.passed


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CdmEvent(BaseModel):
    """
    A Conjunction Data Message reduced to what triage needs.

    Records are immutable. Policy evaluation and Monte Carlo refinement
    produce updated copies that keep the same id.
    """
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    id: str
    object1: str
    object2: str
    tca: datetime                          # Time of closest approach
    creation_date: datetime
    miss_distance: float                   # meters
    relative_speed: float                  # m/s
    pc_analytic: float
    pc_mc: Optional[float] = None          # Set only after Monte Carlo refinement
    hbr: float                             # Combined hard-body radius, meters

    gates: Gates
    lane: TriageLane = TriageLane.ANALYTIC_OK

    relative_position: Vector3
    relative_velocity: Vector3
    covariance_diagonal: Vector3           # Simplified covariance

    @field_validator("tca", "creation_date")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    # NaN is let through so that it can fail comparisons downstream.
    @field_validator("pc_analytic", "pc_mc")
    @classmethod
    def _check_probability(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and math.isfinite(value) and not 0.0 <= value <= 1.0:
            raise ValueError(f"probability must be within [0, 1], got {value}")
        return value

    @field_validator("miss_distance", "relative_speed")
    @classmethod
    def _check_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError(f"must be >= 0, got {value}")
        return value

    @field_validator("hbr")
    @classmethod
    def _check_hbr(cls, value: float) -> float:
        if value <= 0:
            raise ValueError(f"hard-body radius must be > 0, got {value}")
        return value
