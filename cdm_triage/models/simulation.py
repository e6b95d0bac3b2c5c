"""Monte Carlo refinement output."""

from typing import List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScatterPoint(BaseModel):
    """A sample projected onto the encounter plane, for display only."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    hit: bool


class SimulationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    pc: float = Field(ge=0.0, le=1.0)
    samples: int = Field(gt=0)
    ci_lower: float = Field(ge=0.0)
    ci_upper: float          # Not clamped to 1
    points: List[ScatterPoint] = []

    @model_validator(mode="after")
    def _check_interval(self) -> "SimulationResult":
        if not self.ci_lower <= self.pc <= self.ci_upper:
            raise ValueError(
                f"confidence interval [{self.ci_lower}, {self.ci_upper}] "
                f"does not contain pc={self.pc}"
            )
        return self
