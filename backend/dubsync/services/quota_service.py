"""
Catalog API Quota Tracking Service.

Tracks consumption of the catalog API against a daily budget that rolls over
lazily on the first call after each window boundary. Several API keys can be
pooled; each keeps its own window and they are drawn on in priority order.
"""

import threading
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.orm import Session

from dubsync.core.clock import Clock, utcnow
from dubsync.core.db import SessionFactory, create_if_absent, session_scope
from dubsync.core.exceptions import (
    NotFoundError,
    QuotaExceededError,
    UpstreamQuotaExceededError,
    ValidationError,
)
from dubsync.core.logging import get_logger
from dubsync.models import QuotaRecord
from dubsync.schemas.quota import ApiKeySpec, QuotaGrant, QuotaStatus

logger = get_logger(__name__)

# Unit cost per YouTube Data API v3 method
QUOTA_COSTS = {
    "search.list": 100,
    "videos.list": 1,
    "playlistItems.list": 1,
    "channels.list": 1,
}


def next_midnight(now: datetime, timezone: str) -> datetime:
    """First midnight in ``timezone`` strictly after ``now``, as UTC."""
    tz = ZoneInfo(timezone)
    local = now.astimezone(tz)
    midnight = datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=tz)
    return midnight.astimezone(UTC)


def advance_boundary(reset_at: datetime, now: datetime, window: timedelta) -> datetime:
    """
    Move a window boundary to the first boundary after ``now``.

    Any number of missed windows collapses into a single jump of whole
    windows, counted from the previous boundary rather than from ``now``.
    """
    if now < reset_at:
        return reset_at
    missed = (now - reset_at) // window + 1
    return reset_at + missed * window


class QuotaTracker:
    """
    Daily budget for one quota key.

    Reservations are serialized in-process by a lock and applied with a
    conditional UPDATE, so callers in other processes cannot jointly push
    ``consumed`` past ``daily_limit`` either.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        key: str,
        daily_limit: int,
        window: timedelta = timedelta(hours=24),
        timezone: str = "America/Los_Angeles",
        clock: Clock = utcnow,
    ):
        if daily_limit < 1:
            raise ValidationError("daily_limit must be positive")
        self._session_factory = session_factory
        self.key = key
        self.daily_limit = daily_limit
        self.window = window
        self.timezone = timezone
        self._clock = clock
        self._lock = threading.Lock()

    # =========================================================================
    # Public API
    # =========================================================================

    def reserve(self, cost: int) -> QuotaGrant:
        """
        Reserve quota units before issuing a catalog call.

        Args:
            cost: Units the upcoming call will consume

        Returns:
            QuotaGrant: The reservation and the consumption after it

        Raises:
            ValidationError: If cost is negative or larger than the daily limit
            QuotaExceededError: If the reservation would exceed the limit
        """
        if cost < 0:
            raise ValidationError(f"Quota cost must not be negative, got {cost}")
        if cost > self.daily_limit:
            raise ValidationError(f"Quota cost {cost} exceeds the daily limit {self.daily_limit}")

        with self._lock:
            now = self._clock()
            self._prepare(now)

            with session_scope(self._session_factory) as session:
                result = session.execute(
                    sa.update(QuotaRecord)
                    .where(
                        QuotaRecord.key == self.key,
                        QuotaRecord.consumed + cost <= QuotaRecord.daily_limit,
                    )
                    .values(consumed=QuotaRecord.consumed + cost, updated_at=now)
                )
                granted = result.rowcount == 1
                record = self._load(session)
                consumed, limit, reset_at = record.consumed, record.daily_limit, record.reset_at

        if not granted:
            logger.warning(
                f"Quota {self.key} exhausted: requested {cost}, "
                f"consumed {consumed}/{limit}, resets at {reset_at.isoformat()}"
            )
            raise QuotaExceededError(self.key, cost, consumed, limit, reset_at)

        logger.debug(f"Quota {self.key} reserved {cost}: {consumed}/{limit}")
        return QuotaGrant(key=self.key, cost=cost, consumed=consumed, limit=limit, reset_at=reset_at)

    def get_status(self) -> QuotaStatus:
        """Current consumption, applying any pending rollover first."""
        with self._lock:
            now = self._clock()
            self._prepare(now)
            with session_scope(self._session_factory) as session:
                return self._to_status(self._load(session))

    def reset_window(self) -> QuotaStatus:
        """
        Operator reset: zero consumption and move the boundary past now.

        Returns:
            QuotaStatus: State after the reset
        """
        with self._lock:
            now = self._clock()
            self._prepare(now)
            with session_scope(self._session_factory) as session:
                record = self._load(session)
                record.consumed = 0
                record.reset_at = advance_boundary(record.reset_at, now, self.window)
                record.updated_at = now
                session.flush()
                status = self._to_status(record)

        logger.warning(f"Quota {self.key} reset by operator, next boundary {status.reset_at.isoformat()}")
        return status

    def mark_exhausted(self, reason: str) -> QuotaStatus:
        """
        Treat the current window as spent.

        Used when the catalog API itself reports the daily quota as exceeded
        even though local accounting still shows budget left.
        """
        with self._lock:
            now = self._clock()
            self._prepare(now)
            with session_scope(self._session_factory) as session:
                record = self._load(session)
                record.consumed = record.daily_limit
                record.updated_at = now
                session.flush()
                status = self._to_status(record)

        logger.warning(f"Quota {self.key} marked exhausted: {reason}")
        return status

    # =========================================================================
    # Internals
    # =========================================================================

    def _prepare(self, now: datetime) -> None:
        """Ensure the record exists, matches the configured limit, and is rolled over."""
        created = create_if_absent(
            self._session_factory,
            QuotaRecord(
                key=self.key,
                daily_limit=self.daily_limit,
                consumed=0,
                reset_at=next_midnight(now, self.timezone),
                updated_at=now,
            ),
        )
        if created:
            logger.info(f"Created quota record {self.key} with limit {self.daily_limit}")

        with session_scope(self._session_factory) as session:
            record = self._load(session)

            if record.daily_limit != self.daily_limit:
                logger.info(
                    f"Quota {self.key} limit changed {record.daily_limit} -> {self.daily_limit}"
                )
                session.execute(
                    sa.update(QuotaRecord)
                    .where(QuotaRecord.key == self.key)
                    .values(
                        daily_limit=self.daily_limit,
                        consumed=sa.case(
                            (QuotaRecord.consumed > self.daily_limit, self.daily_limit),
                            else_=QuotaRecord.consumed,
                        ),
                        updated_at=now,
                    )
                )

            if now >= record.reset_at:
                previous = record.reset_at
                boundary = advance_boundary(previous, now, self.window)
                # Conditional on the old boundary so only one caller applies it
                result = session.execute(
                    sa.update(QuotaRecord)
                    .where(QuotaRecord.key == self.key, QuotaRecord.reset_at == previous)
                    .values(consumed=0, reset_at=boundary, updated_at=now)
                )
                if result.rowcount == 1:
                    logger.info(
                        f"Quota {self.key} rolled over: window ended {previous.isoformat()}, "
                        f"next boundary {boundary.isoformat()}"
                    )

    def _load(self, session: Session) -> QuotaRecord:
        return session.scalars(
            sa.select(QuotaRecord)
            .where(QuotaRecord.key == self.key)
            .execution_options(populate_existing=True)
        ).one()

    def _to_status(self, record: QuotaRecord) -> QuotaStatus:
        remaining = record.daily_limit - record.consumed
        return QuotaStatus(
            key=record.key,
            consumed=record.consumed,
            limit=record.daily_limit,
            remaining=remaining,
            reset_at=record.reset_at,
            active_key=record.key if remaining > 0 else None,
        )


class ApiKeyPool:
    """
    Priority-ordered catalog API keys, each with its own daily window.

    Reservations draw from the first key with budget left. A key that is
    spent, locally or as reported by the catalog API, is passed over until
    its own window rolls over.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        keys: list[ApiKeySpec],
        name: str = "youtube-data-api",
        window: timedelta = timedelta(hours=24),
        timezone: str = "America/Los_Angeles",
        clock: Clock = utcnow,
    ):
        if not keys:
            raise ValidationError("At least one API key is required")
        key_ids = [spec.key_id for spec in keys]
        if len(set(key_ids)) != len(key_ids):
            raise ValidationError(f"Duplicate API key ids: {key_ids}")

        self.name = name
        # sorted() is stable, so equal priorities keep their configured order
        self._keys = sorted(keys, key=lambda spec: spec.priority)
        self._trackers = {
            spec.key_id: QuotaTracker(
                session_factory,
                key=spec.key_id,
                daily_limit=spec.daily_limit,
                window=window,
                timezone=timezone,
                clock=clock,
            )
            for spec in self._keys
        }

    @property
    def key_ids(self) -> list[str]:
        return [spec.key_id for spec in self._keys]

    def reserve(self, cost: int) -> QuotaGrant:
        """
        Reserve units on the highest-priority key that can cover them.

        Returns:
            QuotaGrant: The reservation, carrying the key's credential

        Raises:
            QuotaExceededError: If no key has ``cost`` units left
        """
        if cost > max(spec.daily_limit for spec in self._keys):
            raise ValidationError(f"Quota cost {cost} exceeds every key's daily limit")

        for spec in self._keys:
            if cost > spec.daily_limit:
                continue
            try:
                grant = self._trackers[spec.key_id].reserve(cost)
            except QuotaExceededError:
                continue
            return grant.model_copy(update={"credential": spec.api_key or None})

        status = self.get_status()
        raise QuotaExceededError(self.name, cost, status.consumed, status.limit, status.reset_at)

    def charge(self, credential: str | None, cost: int) -> QuotaGrant:
        """Reserve units on the key owning ``credential``, or on the active key if none does."""
        for spec in self._keys:
            if credential and spec.api_key == credential:
                grant = self._trackers[spec.key_id].reserve(cost)
                return grant.model_copy(update={"credential": spec.api_key})
        return self.reserve(cost)

    def get_status(self) -> QuotaStatus:
        """Totals across all keys, with each key's window listed by priority."""
        statuses = [self._trackers[spec.key_id].get_status() for spec in self._keys]
        return self._combine(statuses)

    def reset_window(self, key: str | None = None) -> QuotaStatus:
        """
        Operator reset of one key's window, or of every key.

        Raises:
            NotFoundError: If ``key`` is not in the pool
        """
        for key_id in [self._tracker(key).key] if key else self.key_ids:
            self._trackers[key_id].reset_window()
        return self.get_status()

    def mark_exhausted(self, reason: str, key: str | None = None) -> QuotaStatus:
        """
        Treat a key's current window as spent so reservations move to the next key.

        Args:
            reason: Why the key is being retired, usually the upstream error
            key: Key to retire (defaults to the currently active key)
        """
        if key is None:
            key = self.get_status().active_key
            if key is None:
                return self.get_status()
        self._tracker(key).mark_exhausted(reason)

        status = self.get_status()
        if status.active_key:
            logger.warning(f"Quota key {key} spent; switching to {status.active_key}")
        else:
            logger.warning(f"Quota key {key} spent; no keys left until {status.reset_at.isoformat()}")
        return status

    def _tracker(self, key: str) -> QuotaTracker:
        tracker = self._trackers.get(key)
        if tracker is None:
            raise NotFoundError("Quota key", key)
        return tracker

    def _combine(self, statuses: list[QuotaStatus]) -> QuotaStatus:
        active = next((s.key for s in statuses if s.remaining > 0), None)
        return QuotaStatus(
            key=self.name,
            consumed=sum(s.consumed for s in statuses),
            limit=sum(s.limit for s in statuses),
            remaining=sum(s.remaining for s in statuses),
            reset_at=min(s.reset_at for s in statuses),
            active_key=active,
            keys=statuses,
        )


T = TypeVar("T")


async def reserve_and_call(
    quota: ApiKeyPool, cost: int, call: Callable[[str | None], Awaitable[T]]
) -> T:
    """
    Reserve quota and issue one catalog call with the granted key.

    When the catalog API reports the key as over quota, the key is retired
    and the call is repeated on the next one. Once every key is spent the
    reservation raises QuotaExceededError.
    """
    while True:
        grant = quota.reserve(cost)
        try:
            return await call(grant.credential)
        except UpstreamQuotaExceededError as e:
            quota.mark_exhausted(str(e), key=grant.key)
