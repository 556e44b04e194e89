"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from dubsync.models.base import Base, UTCDateTime
from dubsync.models.quota_record import QuotaRecord
from dubsync.models.subscription import SourceType, Subscription
from dubsync.models.task_status import TaskState, TaskStatus
from dubsync.models.video import TranslationStatus, Video

__all__ = [
    "Base",
    "UTCDateTime",
    "QuotaRecord",
    "SourceType",
    "Subscription",
    "TaskState",
    "TaskStatus",
    "TranslationStatus",
    "Video",
]
