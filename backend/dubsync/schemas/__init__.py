"""
Pydantic schemas for service results and API request/response validation.
"""

from dubsync.schemas.backfill import BackfillRequest, BackfillResult
from dubsync.schemas.catalog import CatalogItem, CatalogItemDetail, CatalogPage
from dubsync.schemas.completion import (
    MailboxBatch,
    MailboxConfig,
    MailboxMarker,
    MailboxMessage,
    PollResult,
)
from dubsync.schemas.health import HealthResponse
from dubsync.schemas.quota import QuotaGrant, QuotaStatus
from dubsync.schemas.sync import SubscriptionCreate, SubscriptionResponse, SyncReport
from dubsync.schemas.tasks import ForceReleaseRequest, Lease, TaskStatusView
from dubsync.schemas.translation import (
    CompletionDisposition,
    CompletionEvent,
    ExpiryResult,
    QueueStatus,
    SubmissionAccepted,
    VideoResponse,
)

__all__ = [
    "BackfillRequest",
    "BackfillResult",
    "CatalogItem",
    "CatalogItemDetail",
    "CatalogPage",
    "MailboxBatch",
    "MailboxConfig",
    "MailboxMarker",
    "MailboxMessage",
    "PollResult",
    "HealthResponse",
    "QuotaGrant",
    "QuotaStatus",
    "SubscriptionCreate",
    "SubscriptionResponse",
    "SyncReport",
    "ForceReleaseRequest",
    "Lease",
    "TaskStatusView",
    "CompletionDisposition",
    "CompletionEvent",
    "ExpiryResult",
    "QueueStatus",
    "SubmissionAccepted",
    "VideoResponse",
]
