"""
Mailbox and completion-watch schemas.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class MailboxMarker(BaseModel):
    """Position of the last handled message in a mailbox folder."""

    uid_validity: int | None = Field(default=None, description="IMAP UIDVALIDITY the UID belongs to")
    last_uid: int | None = Field(default=None, description="Highest contiguously handled UID")


class MailboxConfig(BaseModel):
    """Fetch parameters passed to the mailbox client."""

    folder: str = Field(default="INBOX")
    since: datetime | None = Field(default=None, description="Lookback start when no marker exists")
    limit: int = Field(default=100, description="Maximum messages per fetch")


class MailboxMessage(BaseModel):
    """A raw message fetched from the mailbox."""

    uid: int = Field(description="IMAP UID")
    sender: str = Field(default="", description="From header")
    subject: str = Field(default="", description="Subject header")
    body: str = Field(default="", description="Decoded text and HTML parts")
    received_at: datetime | None = Field(default=None, description="Date header")


class MailboxBatch(BaseModel):
    """Messages fetched after a marker, ordered by UID."""

    uid_validity: int | None = Field(default=None)
    messages: list[MailboxMessage] = Field(default_factory=list)


class PollResult(BaseModel):
    """Outcome of one completion-watch poll."""

    outcome: Literal["succeeded", "failed", "skipped"] = Field(description="Run outcome")
    processed: int = Field(default=0, description="Completion events applied")
    errors: int = Field(default=0, description="Messages that failed to parse")
    skipped: int = Field(default=0, description="Messages not from the dubbing service")
    unmatched: int = Field(default=0, description="Events whose token matched no video")
    marker: int | None = Field(default=None, description="Last handled UID after this poll")
    error: str | None = Field(default=None, description="Run-level error")
