"""Video model: a catalog item and its translation state."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dubsync.models.base import Base, UTCDateTime, new_id, now

if TYPE_CHECKING:
    from dubsync.models.subscription import Subscription


class TranslationStatus:
    """Per-video translation states."""

    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (NONE, PENDING, PROCESSING, COMPLETED, FAILED)
    TERMINAL = (COMPLETED, FAILED)

    # Allowed forward moves; failed -> pending is the only way back.
    TRANSITIONS = {
        NONE: (PENDING,),
        PENDING: (PROCESSING, FAILED),
        PROCESSING: (COMPLETED, FAILED),
        FAILED: (PENDING,),
        COMPLETED: (),
    }

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, ())


class Video(Base):
    __tablename__ = "videos"
    __table_args__ = (
        Index("ix_videos_translation_status", "translation_status"),
        Index("ix_videos_backfill", "duration_seconds", "backfill_attempts"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    external_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=True, index=True
    )

    # Catalog metadata
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    channel_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    channel_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Translation state
    translation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TranslationStatus.NONE
    )
    submission_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    translation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    translated_video_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    translation_finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Backfill bookkeeping
    backfill_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    backfill_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=now, onupdate=now
    )

    subscription: Mapped["Subscription | None"] = relationship(
        "Subscription", back_populates="videos"
    )

    def __repr__(self) -> str:
        return f"<Video {self.external_id} status={self.translation_status}>"
