"""
Collaborator capabilities the core services depend on.

Concrete clients live beside this module; tests provide in-memory fakes.
"""

from datetime import datetime
from typing import Protocol

from dubsync.schemas.catalog import CatalogItemDetail, CatalogPage
from dubsync.schemas.completion import MailboxBatch, MailboxConfig, MailboxMarker


class CatalogClient(Protocol):
    """Listing and detail lookups against the video catalog."""

    def listing_cost(self, source_type: str) -> int:
        """Quota units one listing page costs for this source type."""
        ...

    async def list_channel_items(
        self,
        source_type: str,
        source_id: str,
        page_token: str | None = None,
        published_after: datetime | None = None,
        api_key: str | None = None,
    ) -> CatalogPage: ...

    async def get_item_detail(self, item_id: str, api_key: str | None = None) -> CatalogItemDetail: ...


class SubmissionClient(Protocol):
    """Dubbing service submission."""

    async def submit(self, external_id: str, title: str | None = None) -> str:
        """Submit a video and return the correlation token."""
        ...


class MailboxClient(Protocol):
    """Notification mailbox reader."""

    async def fetch_since(self, marker: MailboxMarker, config: MailboxConfig) -> MailboxBatch: ...


class SharePageResolver(Protocol):
    """Reads a dubbing-service share page back to its source video."""

    async def resolve_external_id(self, share_url: str) -> str | None:
        """Catalog video ID the shared translation was made from, if the page names one."""
        ...
