"""Subscription model: a followed channel or playlist."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dubsync.models.base import Base, UTCDateTime, new_id, now

if TYPE_CHECKING:
    from dubsync.models.video import Video


class SourceType:
    CHANNEL = "channel"
    PLAYLIST = "playlist"

    ALL = (CHANNEL, PLAYLIST)


class Subscription(Base):
    """A catalog source whose new videos are pulled on every sync."""

    __tablename__ = "subscriptions"
    __table_args__ = (UniqueConstraint("source_type", "source_id", name="uq_subscription_source"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False, default=SourceType.CHANNEL)
    source_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=now, onupdate=now
    )

    videos: Mapped[list["Video"]] = relationship(
        "Video", back_populates="subscription", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Subscription {self.source_type}:{self.source_id} name={self.name!r}>"
