"""Risk policy — the entire external tuning surface of triage."""

from pydantic import BaseModel, ConfigDict, Field


class PolicyConfig(BaseModel):
    """
    Thresholds used to classify events into lanes.

    Immutable. Any change requires a fresh classification pass over the
    working set; lanes computed under an older policy are stale.
    """
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    pc_red_threshold: float = Field(gt=0.0, le=1.0, default=1e-4)
    eta_threshold: float = Field(gt=0.0, default=10.0)
    tangency_threshold: float = Field(gt=0.0, default=0.97)
    conditioning_threshold: float = Field(gt=0.0, default=5.0)
    warning_time_threshold: float = Field(ge=0.0, default=24.0)   # hours


DEFAULT_POLICY = PolicyConfig()
