"""Bulk ingestion configuration and outcome."""

from typing import List, Optional

from pydantic import BaseModel, Field


class IngestionConfig(BaseModel):
    """Knobs for the CSV ingestion pipeline."""

    batch_size: int = Field(gt=0, default=1000)
    max_rejections_reported: int = Field(ge=0, default=100)


class RowRejection(BaseModel):
    """A row that was skipped during ingestion, and why."""

    line_number: int          # 1-based, header is line 1
    reason: str


class IngestionResult(BaseModel):
    """
    Outcome of one ingestion call.

    On a stream failure `error` is set and `count` reflects only the rows in
    batches that were already flushed to the store.
    """

    count: int = 0
    batches: int = 0
    error: Optional[str] = None
    rejected: List[RowRejection] = []
    rejected_total: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None
