"""
Exception taxonomy shared by the services, workers and API layer.

Job-level operations (sync, watcher, backfill) record these on the task status
record instead of raising them past the job boundary; the submission queue
raises them straight to its caller.
"""

from datetime import datetime


class DubSyncError(Exception):
    """Base exception for all DubSync errors."""

    code = "error"


# =============================================================================
# Caller Errors
# =============================================================================


class ValidationError(DubSyncError):
    """Bad caller input."""

    code = "validation_error"


class NotFoundError(DubSyncError):
    """A referenced record does not exist."""

    code = "not_found"

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


# =============================================================================
# Submission Rejections
# =============================================================================


class SubmissionRejected(DubSyncError):
    """A translation submission failed an eligibility check."""

    code = "rejected"

    def __init__(self, video_id: str, message: str):
        self.video_id = video_id
        super().__init__(message)


class VideoTooLongError(SubmissionRejected):
    """Video is at or above the maximum duration accepted by the dubbing service."""

    code = "video_too_long"

    def __init__(self, video_id: str, duration_seconds: int | None, max_seconds: int):
        self.duration_seconds = duration_seconds
        self.max_seconds = max_seconds
        super().__init__(
            video_id,
            f"Video {video_id} is {duration_seconds}s long; limit is below {max_seconds}s",
        )


class DurationUnknownError(VideoTooLongError):
    """Video duration has not been resolved, so it cannot be shown to be short enough."""

    code = "duration_unknown"

    def __init__(self, video_id: str, max_seconds: int):
        self.duration_seconds = None
        self.max_seconds = max_seconds
        SubmissionRejected.__init__(
            self, video_id, f"Video {video_id} has no known duration yet"
        )


class AlreadyInFlightError(SubmissionRejected):
    """Video already has a submission that is not in a retryable state."""

    code = "already_in_flight"

    def __init__(self, video_id: str, status: str):
        self.status = status
        super().__init__(video_id, f"Video {video_id} is already {status}")


# =============================================================================
# Quota
# =============================================================================


class QuotaExceededError(DubSyncError):
    """Reservation would push consumption over the daily limit."""

    code = "quota_exceeded"

    def __init__(self, key: str, requested: int, consumed: int, limit: int, reset_at: datetime):
        self.key = key
        self.requested = requested
        self.consumed = consumed
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(
            f"{key} quota exceeded: requested {requested}, "
            f"consumed {consumed} / {limit}, resets at {reset_at.isoformat()}"
        )


# =============================================================================
# External Services
# =============================================================================


class ExternalServiceError(DubSyncError):
    """Network or third-party fault."""

    code = "external_service_error"


class CatalogError(ExternalServiceError):
    """Catalog (YouTube) API error."""

    pass


class CatalogConnectionError(CatalogError):
    """Transient catalog failure eligible for retry."""

    pass


class CatalogNotFoundError(CatalogError):
    """Catalog item or source does not exist upstream."""

    pass


class UpstreamQuotaExceededError(CatalogError):
    """The catalog API itself reported the daily quota as exhausted."""

    pass


class SubmissionFailedError(ExternalServiceError):
    """The dubbing service refused or failed a submission."""

    code = "submission_failed"

    def __init__(self, video_id: str, message: str):
        self.video_id = video_id
        super().__init__(message)


class MailboxError(ExternalServiceError):
    """Mailbox protocol or authentication failure."""

    pass


class MailboxConnectionError(MailboxError):
    """Transient mailbox failure eligible for retry."""

    pass


# =============================================================================
# Task Coordination
# =============================================================================


class AlreadyRunningError(DubSyncError):
    """Another run holds the lease for this task."""

    code = "already_running"

    def __init__(self, task_name: str, started_at: datetime | None):
        self.task_name = task_name
        self.started_at = started_at
        since = f" since {started_at.isoformat()}" if started_at else ""
        super().__init__(f"Task {task_name} is already running{since}")


# =============================================================================
# Persistence & Parsing
# =============================================================================


class PersistenceError(DubSyncError):
    """Storage failure; fatal for the current run."""

    code = "persistence_error"


class CompletionParseError(DubSyncError):
    """A dubbing-service notification could not be parsed."""

    code = "parse_error"
