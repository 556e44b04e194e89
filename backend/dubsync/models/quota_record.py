"""Persisted quota window per API key."""

from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from dubsync.models.base import Base, UTCDateTime, now


class QuotaRecord(Base):
    __tablename__ = "quota_records"
    __table_args__ = (
        CheckConstraint("consumed >= 0", name="ck_quota_consumed_non_negative"),
        CheckConstraint("consumed <= daily_limit", name="ck_quota_consumed_within_limit"),
    )

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=now, onupdate=now
    )

    def __repr__(self) -> str:
        return f"<QuotaRecord {self.key} {self.consumed}/{self.daily_limit}>"
