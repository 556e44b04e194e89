"""
Task registry schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class Lease(BaseModel):
    """Proof of ownership of a named task run."""

    task_name: str = Field(description="Task name")
    token: str = Field(description="Lease token; must match the stored token on release")
    started_at: datetime = Field(description="When the run acquired the lease")
    checkpoint: dict[str, Any] = Field(
        default_factory=dict, description="Task-specific state carried between runs"
    )


class TaskStatusView(BaseModel):
    """Read model of a task status record."""

    task_name: str = Field(description="Task name")
    state: str = Field(description="Task state: idle | running | succeeded | failed")
    started_at: datetime | None = Field(default=None, description="Last start timestamp")
    finished_at: datetime | None = Field(default=None, description="Last finish timestamp")
    next_scheduled_at: datetime | None = Field(default=None, description="Next planned run")
    last_error: str | None = Field(default=None, description="Error from the last failed run")
    run_count: int = Field(default=0, description="Number of completed runs")
    stale: bool = Field(
        default=False, description="True when a running lease is past the staleness threshold"
    )


class ForceReleaseRequest(BaseModel):
    """Operator request to mark a stuck run failed."""

    reason: str = Field(default="released by operator", description="Reason recorded as last error")
