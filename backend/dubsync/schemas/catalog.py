"""
Catalog (YouTube) item schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CatalogItem(BaseModel):
    """An item returned by a listing call."""

    external_id: str = Field(description="Catalog video ID")
    title: str = Field(default="", description="Video title")
    description: str | None = Field(default=None, description="Video description")
    thumbnail_url: str | None = Field(default=None, description="Best available thumbnail")
    published_at: datetime | None = Field(default=None, description="Publish timestamp")
    channel_id: str | None = Field(default=None, description="Owning channel ID")
    channel_title: str | None = Field(default=None, description="Owning channel title")


class CatalogItemDetail(CatalogItem):
    """Full item metadata returned by a detail call."""

    duration_seconds: int | None = Field(default=None, description="Duration in seconds")


class CatalogPage(BaseModel):
    """One page of a listing call."""

    items: list[CatalogItem] = Field(default_factory=list, description="Items in listing order")
    next_page_token: str | None = Field(default=None, description="Token for the next page")
    unit_cost: int = Field(default=1, description="Quota units this page cost")
