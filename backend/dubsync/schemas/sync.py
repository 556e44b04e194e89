"""
Subscription sync schemas.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class SubscriptionCreate(BaseModel):
    """Request to follow a channel or playlist."""

    source_type: Literal["channel", "playlist"] = Field(
        default="channel", description="Source type: channel | playlist"
    )
    source_id: str = Field(min_length=1, description="Catalog channel or playlist ID")
    name: str = Field(min_length=1, description="Display name")


class SubscriptionResponse(BaseModel):
    """Subscription information response."""

    id: str = Field(description="Subscription ID")
    source_type: str = Field(description="Source type")
    source_id: str = Field(description="Catalog channel or playlist ID")
    name: str = Field(description="Display name")
    last_synced_at: datetime | None = Field(default=None, description="Last full sync pass")
    created_at: datetime = Field(description="Creation timestamp")

    model_config = {"from_attributes": True}


class SyncReport(BaseModel):
    """Outcome of a sync run."""

    outcome: Literal["succeeded", "failed", "skipped"] = Field(description="Run outcome")
    subscriptions_synced: int = Field(default=0, description="Subscriptions fully passed")
    videos_added: int = Field(default=0, description="New videos recorded")
    videos_updated: int = Field(default=0, description="Known videos refreshed")
    quota_exhausted: bool = Field(default=False, description="Run stopped on the quota budget")
    errors: list[str] = Field(default_factory=list, description="Per-subscription failures")
    started_at: datetime | None = Field(default=None, description="Run start")
    finished_at: datetime | None = Field(default=None, description="Run finish")
