"""
Shared pytest fixtures.

Provides a per-test SQLite database, in-memory fakes for the catalog,
submission and mailbox collaborators, and a controllable clock.
"""

import os

# Must be set before dubsync.core.config is imported
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_FORMAT"] = "text"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.setdefault("YOUTUBE_API_KEY", "")
os.environ.setdefault("HEYGEN_API_KEY", "")
os.environ.setdefault("MAILBOX_HOST", "")

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from dubsync.core.config import Settings
from dubsync.core.db import create_db_engine, create_session_factory, init_db, session_scope
from dubsync.core.exceptions import (
    CatalogNotFoundError,
    SubmissionFailedError,
    UpstreamQuotaExceededError,
)
from dubsync.models import SourceType, TranslationStatus, Video
from dubsync.schemas.catalog import CatalogItem, CatalogItemDetail, CatalogPage
from dubsync.schemas.completion import MailboxBatch, MailboxConfig, MailboxMarker, MailboxMessage
from dubsync.services.container import Services, build_services

START = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeCatalog:
    """In-memory catalog with paginated listings, newest first."""

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.details: dict[str, CatalogItemDetail] = {}
        self.sources: dict[str, list[str]] = {}
        self.list_calls: list[dict] = []
        self.detail_calls: list[str] = []
        self.list_errors: dict[str, Exception] = {}
        self.detail_errors: dict[str, Exception] = {}
        self.rejected_keys: set[str] = set()
        self.api_keys_used: list[str | None] = []
        self.hang_on: set[str] = set()
        self.list_barrier: int | None = None
        self._listings_started = 0
        self._barrier_open = asyncio.Event()

    def add_video(
        self,
        source_id: str | None,
        external_id: str,
        duration: int | None = 600,
        published_at: datetime | None = None,
        title: str | None = None,
    ) -> CatalogItemDetail:
        index = len(self.details)
        detail = CatalogItemDetail(
            external_id=external_id,
            title=title or f"Video {external_id}",
            description=f"About {external_id}",
            thumbnail_url=f"https://i.ytimg.com/vi/{external_id}/hqdefault.jpg",
            published_at=published_at or START - timedelta(days=30) + timedelta(hours=index),
            channel_id=source_id,
            channel_title=f"Channel {source_id}",
            duration_seconds=duration,
        )
        self.details[external_id] = detail
        if source_id is not None:
            self.sources.setdefault(source_id, []).append(external_id)
        return detail

    def listing_cost(self, source_type: str) -> int:
        return 1 if source_type == SourceType.PLAYLIST else 100

    async def list_channel_items(
        self,
        source_type: str,
        source_id: str,
        page_token: str | None = None,
        published_after: datetime | None = None,
        api_key: str | None = None,
    ) -> CatalogPage:
        self.list_calls.append(
            {"source_id": source_id, "page_token": page_token, "published_after": published_after}
        )
        self._check_key(api_key)
        if self.list_barrier is not None:
            self._listings_started += 1
            if self._listings_started >= self.list_barrier:
                self._barrier_open.set()
            await self._barrier_open.wait()
        if source_id in self.list_errors:
            raise self.list_errors[source_id]

        details = [self.details[i] for i in self.sources.get(source_id, [])]
        if published_after is not None:
            details = [d for d in details if d.published_at > published_after]
        details.sort(key=lambda d: d.published_at, reverse=True)

        start = int(page_token or 0)
        chunk = details[start : start + self.page_size]
        has_more = start + self.page_size < len(details)
        return CatalogPage(
            items=[CatalogItem(**d.model_dump(exclude={"duration_seconds"})) for d in chunk],
            next_page_token=str(start + self.page_size) if has_more else None,
            unit_cost=self.listing_cost(source_type),
        )

    async def get_item_detail(self, item_id: str, api_key: str | None = None) -> CatalogItemDetail:
        self.detail_calls.append(item_id)
        self._check_key(api_key)
        if item_id in self.hang_on:
            await asyncio.Event().wait()
        if item_id in self.detail_errors:
            raise self.detail_errors[item_id]
        if item_id not in self.details:
            raise CatalogNotFoundError(f"Video {item_id} not found")
        return self.details[item_id]

    def _check_key(self, api_key: str | None) -> None:
        self.api_keys_used.append(api_key)
        if api_key in self.rejected_keys:
            raise UpstreamQuotaExceededError(f"quotaExceeded for key {api_key}")


class FakeSubmission:
    """Dubbing service that hands out sequential tokens."""

    def __init__(self):
        self.calls: list[str] = []
        self.error: str | None = None
        self.gate: asyncio.Event | None = None

    async def submit(self, external_id: str, title: str | None = None) -> str:
        self.calls.append(external_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise SubmissionFailedError(external_id, self.error)
        return f"tok-{len(self.calls)}"


class FakeSharePage:
    """Share pages keyed by URL, each naming a source video."""

    def __init__(self):
        self.pages: dict[str, str] = {}
        self.calls: list[str] = []

    async def resolve_external_id(self, share_url: str) -> str | None:
        self.calls.append(share_url)
        return self.pages.get(share_url)


class FakeMailbox:
    """Mailbox folder that honours the UID marker like the IMAP client."""

    def __init__(self, uid_validity: int = 1):
        self.uid_validity = uid_validity
        self.messages: list[MailboxMessage] = []
        self.calls: list[tuple[MailboxMarker, MailboxConfig]] = []
        self.error: Exception | None = None

    def add(self, subject: str, body: str = "", sender: str = "HeyGen <noreply@heygen.com>") -> int:
        uid = (max((m.uid for m in self.messages), default=0)) + 1
        self.messages.append(
            MailboxMessage(uid=uid, sender=sender, subject=subject, body=body, received_at=START)
        )
        return uid

    def add_completion(self, token: str) -> int:
        return self.add(
            "Your video translation is ready",
            f"Watch it here: https://app.heygen.com/video-translate/share/{token}",
        )

    async def fetch_since(self, marker: MailboxMarker, config: MailboxConfig) -> MailboxBatch:
        self.calls.append((marker, config))
        if self.error is not None:
            raise self.error
        messages = sorted(self.messages, key=lambda m: m.uid)
        if marker.last_uid is not None and marker.uid_validity == self.uid_validity:
            messages = [m for m in messages if m.uid > marker.last_uid]
        return MailboxBatch(uid_validity=self.uid_validity, messages=messages[: config.limit])


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    test_engine = create_db_engine(f"sqlite:///{tmp_path / 'dubsync-test.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def submission() -> FakeSubmission:
    return FakeSubmission()


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()


@pytest.fixture
def share_pages() -> FakeSharePage:
    return FakeSharePage()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        quota_daily_limit=10000,
        sync_concurrency=2,
        sync_max_videos_per_subscription=5,
        sync_initial_max_videos=3,
        task_stale_after_minutes=60,
        mailbox_max_parse_attempts=3,
        backfill_max_attempts=3,
    )


@pytest.fixture
def services(
    session_factory, catalog, submission, mailbox, share_pages, test_settings, clock
) -> Services:
    return build_services(
        session_factory=session_factory,
        catalog=catalog,
        submission=submission,
        mailbox=mailbox,
        share_resolver=share_pages,
        config=test_settings,
        clock=clock,
    )


@pytest.fixture
def make_video(session_factory, clock):
    """Insert a video directly and return its ID."""
    counter = {"n": 0}

    def _make(
        duration: int | None = 600,
        status: str = TranslationStatus.NONE,
        token: str | None = None,
        external_id: str | None = None,
        created_offset: timedelta = timedelta(0),
        **fields,
    ) -> str:
        counter["n"] += 1
        with session_scope(session_factory) as session:
            video = Video(
                external_id=external_id or f"yt-{counter['n']:04d}",
                title=f"Video {counter['n']}",
                duration_seconds=duration,
                translation_status=status,
                submission_token=token,
                created_at=clock() + created_offset,
                updated_at=clock(),
                **fields,
            )
            session.add(video)
            session.flush()
            return video.id

    return _make


@pytest.fixture
def get_video(session_factory):
    def _get(video_id: str) -> Video:
        with session_scope(session_factory) as session:
            return session.get(Video, video_id)

    return _get

