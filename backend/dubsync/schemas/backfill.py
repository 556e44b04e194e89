"""
Backfill schemas.
"""

from typing import Literal

from pydantic import BaseModel, Field


class BackfillRequest(BaseModel):
    max_items: int | None = Field(default=None, description="Batch size (defaults to configured)")


class BackfillResult(BaseModel):
    """Outcome of one backfill batch."""

    outcome: Literal["succeeded", "failed", "skipped"] = Field(description="Run outcome")
    processed: int = Field(default=0, description="Records attempted")
    updated: int = Field(default=0, description="Records resolved")
    failed: int = Field(default=0, description="Records that failed this batch")
    remaining: int = Field(default=0, description="Eligible records left after the batch")
    quota_exhausted: bool = Field(default=False)
    errors: list[str] = Field(default_factory=list)
