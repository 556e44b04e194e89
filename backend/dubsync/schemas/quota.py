"""
Quota schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ApiKeySpec(BaseModel):
    """One catalog API key and its daily budget."""

    key_id: str = Field(description="Stable identifier, used as the quota record key")
    api_key: str = Field(default="", repr=False, description="Credential sent to the catalog API")
    daily_limit: int = Field(ge=1, description="Daily limit for this key")
    priority: int = Field(default=0, description="Lower values are used first")


class QuotaGrant(BaseModel):
    """A successful reservation against the daily budget."""

    key: str = Field(description="Quota key")
    cost: int = Field(description="Units reserved")
    consumed: int = Field(description="Units consumed after this reservation")
    limit: int = Field(description="Daily limit")
    reset_at: datetime = Field(description="Start of the next window")
    credential: str | None = Field(
        default=None, exclude=True, repr=False, description="API key to issue the call with"
    )

    @property
    def remaining(self) -> int:
        return self.limit - self.consumed


class QuotaStatus(BaseModel):
    """Current state of a quota window."""

    key: str = Field(description="Quota key")
    consumed: int = Field(description="Units consumed in the current window")
    limit: int = Field(description="Daily limit")
    remaining: int = Field(description="Units left in the current window")
    reset_at: datetime = Field(description="Start of the next window")
    active_key: str | None = Field(default=None, description="Key the next reservation draws from")
    keys: list["QuotaStatus"] = Field(default_factory=list, description="Per-key windows, by priority")
