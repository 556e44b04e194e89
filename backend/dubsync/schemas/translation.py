"""
Translation submission and completion schemas.
"""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class SubmissionAccepted(BaseModel):
    """A submission the dubbing service acknowledged."""

    video_id: str = Field(description="Video ID")
    status: str = Field(description="Translation status after submission")
    submission_token: str = Field(description="Correlation token from the dubbing service")
    submitted_at: datetime = Field(description="Submission timestamp")


class QueueStatus(BaseModel):
    """Counts of videos per translation state."""

    pending_count: int = Field(default=0)
    processing_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    completed_count: int = Field(default=0)
    last_error: str | None = Field(default=None, description="Most recent submission error")


class CompletionEvent(BaseModel):
    """A parsed completion notification."""

    token: str = Field(description="Correlation token")
    outcome: Literal["success", "failure"] = Field(description="Reported outcome")
    received_at: datetime = Field(description="When the notification was received")
    message_uid: int | None = Field(default=None, description="Mailbox UID of the source message")
    result_url: str | None = Field(default=None, description="Link to the translated video")
    detail: str | None = Field(default=None, description="Failure detail")
    share_url: str | None = Field(default=None, description="Public share page linked from the notice")
    external_id: str | None = Field(
        default=None, description="Source catalog video, when read from the share page"
    )


class CompletionDisposition(StrEnum):
    APPLIED = "applied"
    UNMATCHED = "unmatched"
    ALREADY_TERMINAL = "already_terminal"


class ExpiryResult(BaseModel):
    """Outcome of a stale-submission sweep."""

    outcome: Literal["succeeded", "failed", "skipped"] = Field(description="Run outcome")
    expired_pending: int = Field(default=0)
    expired_processing: int = Field(default=0)


class VideoResponse(BaseModel):
    """Video information response."""

    id: str
    external_id: str
    subscription_id: str | None = None
    title: str
    duration_seconds: int | None = None
    published_at: datetime | None = None
    translation_status: str
    submission_token: str | None = None
    translation_error: str | None = None
    translated_video_url: str | None = None

    model_config = {"from_attributes": True}
