"""Runtime configuration, read from CDM_TRIAGE_* environment variables."""

import logging
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TriageSettings(BaseSettings):
    """
    Configuration for the triage service and its API.

    Each field can be set through `CDM_TRIAGE_<FIELD>`. Empty variables are
    ignored, and `CDM_TRIAGE_SEED=none` leaves the random sources unseeded.
    """

    db_path: str = ":memory:"
    batch_size: int = Field(gt=0, default=1000)
    chunk_size: int = Field(gt=0, default=1024 * 1024)
    mc_samples: int = Field(gt=0, default=5000)
    seed: Optional[int] = 123
    seed_events: int = Field(ge=0, default=50)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CDM_TRIAGE_",
        case_sensitive=False,
        env_ignore_empty=True,
        env_parse_none_str="none",
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
