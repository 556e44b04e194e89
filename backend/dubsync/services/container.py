"""
Service wiring.

Every service is built here with its collaborators passed in explicitly.
Callers (API, workers, tests) hold the resulting ``Services`` object.
"""

from dataclasses import dataclass
from datetime import timedelta

from dubsync.core.clock import Clock, utcnow
from dubsync.core.config import Settings, settings as default_settings
from dubsync.core.db import SessionFactory, SessionLocal
from dubsync.core.exceptions import ExternalServiceError
from dubsync.core.logging import get_logger
from dubsync.schemas.quota import ApiKeySpec
from dubsync.services.backfill_service import BackfillBatcher
from dubsync.services.completion_watcher import CompletionWatcher
from dubsync.services.heygen_client import HeyGenClient, HeyGenSharePage
from dubsync.services.interfaces import (
    CatalogClient,
    MailboxClient,
    SharePageResolver,
    SubmissionClient,
)
from dubsync.services.mailbox_client import ImapMailboxClient
from dubsync.services.quota_service import ApiKeyPool
from dubsync.services.sync_service import SubscriptionSyncEngine
from dubsync.services.task_status_service import TaskStatusRegistry
from dubsync.services.translation_queue import TranslationSubmissionQueue
from dubsync.services.youtube_client import YouTubeClient

logger = get_logger(__name__)


class UnconfiguredClient:
    """Stands in for a collaborator whose credentials are not configured."""

    def __init__(self, name: str):
        self.name = name

    def _fail(self):
        raise ExternalServiceError(f"{self.name} is not configured")

    def listing_cost(self, source_type: str) -> int:
        self._fail()

    async def list_channel_items(self, *args, **kwargs):
        self._fail()

    async def get_item_detail(self, item_id: str, api_key: str | None = None):
        self._fail()

    async def submit(self, external_id: str, title: str | None = None) -> str:
        self._fail()

    async def fetch_since(self, marker, config):
        self._fail()


def api_key_specs(cfg: Settings) -> list[ApiKeySpec]:
    """Primary key first, then the fallbacks, each with the configured daily limit."""
    credentials = [key for key in [cfg.youtube_api_key, *cfg.youtube_api_keys] if key] or [""]
    return [
        ApiKeySpec(
            key_id=cfg.quota_key if index == 0 else f"{cfg.quota_key}-{index + 1}",
            api_key=credential,
            daily_limit=cfg.quota_daily_limit,
            priority=index,
        )
        for index, credential in enumerate(credentials)
    ]


@dataclass
class Services:
    quota: ApiKeyPool
    registry: TaskStatusRegistry
    sync: SubscriptionSyncEngine
    queue: TranslationSubmissionQueue
    watcher: CompletionWatcher
    backfill: BackfillBatcher
    session_factory: SessionFactory


def build_services(
    session_factory: SessionFactory | None = None,
    catalog: CatalogClient | None = None,
    submission: SubmissionClient | None = None,
    mailbox: MailboxClient | None = None,
    share_resolver: SharePageResolver | None = None,
    api_keys: list[ApiKeySpec] | None = None,
    config: Settings | None = None,
    clock: Clock = utcnow,
) -> Services:
    """
    Construct all services.

    Args:
        session_factory: Session factory (defaults to ``SessionLocal``)
        catalog: Catalog client (defaults to a YouTube client from settings)
        submission: Submission client (defaults to a HeyGen client from settings)
        mailbox: Mailbox client (defaults to an IMAP client from settings)
        share_resolver: Share page lookup for notices whose token matches nothing
        api_keys: Catalog API keys (defaults to the keys in settings)
        config: Settings to read tunables from
        clock: Time source shared by every service

    Returns:
        Services: The wired service objects
    """
    cfg = config or default_settings
    factory = session_factory or SessionLocal

    specs = api_keys or api_key_specs(cfg)
    quota = ApiKeyPool(
        factory,
        specs,
        name=cfg.quota_key,
        window=timedelta(hours=cfg.quota_window_hours),
        timezone=cfg.quota_timezone,
        clock=clock,
    )

    if catalog is None:
        primary = min(specs, key=lambda spec: spec.priority).api_key
        catalog = (
            YouTubeClient(api_key=primary, quota=quota)
            if primary
            else UnconfiguredClient("YouTube API")
        )
    if submission is None:
        submission = HeyGenClient() if cfg.heygen_api_key else UnconfiguredClient("HeyGen API")
    if mailbox is None:
        mailbox = ImapMailboxClient() if cfg.mailbox_host else UnconfiguredClient("Mailbox")
    if share_resolver is None:
        share_resolver = HeyGenSharePage()

    registry = TaskStatusRegistry(
        factory,
        stale_after=timedelta(minutes=cfg.task_stale_after_minutes),
        clock=clock,
    )
    sync = SubscriptionSyncEngine(
        factory,
        catalog,
        quota,
        registry,
        concurrency=cfg.sync_concurrency,
        max_videos_per_subscription=cfg.sync_max_videos_per_subscription,
        initial_max_videos=cfg.sync_initial_max_videos,
        refresh_known_videos=cfg.sync_refresh_known_videos,
        run_timeout=cfg.sync_run_timeout_seconds,
        cadence=timedelta(minutes=cfg.sync_interval_minutes),
        clock=clock,
    )
    queue = TranslationSubmissionQueue(
        factory,
        submission,
        registry=registry,
        max_duration_seconds=cfg.translation_max_duration_seconds,
        pending_timeout=timedelta(minutes=cfg.translation_pending_timeout_minutes),
        processing_timeout=timedelta(hours=cfg.translation_processing_timeout_hours),
        expiry_cadence=timedelta(minutes=cfg.translation_expiry_interval_minutes),
        clock=clock,
    )
    watcher = CompletionWatcher(
        mailbox,
        queue,
        registry,
        share_resolver=share_resolver,
        folder=cfg.mailbox_folder,
        sender_domain=cfg.mailbox_sender_domain,
        initial_lookback=timedelta(days=cfg.mailbox_initial_lookback_days),
        max_parse_attempts=cfg.mailbox_max_parse_attempts,
        fetch_limit=cfg.mailbox_fetch_limit,
        run_timeout=cfg.mailbox_run_timeout_seconds,
        cadence=timedelta(seconds=cfg.mailbox_poll_interval_seconds),
        clock=clock,
    )
    backfill = BackfillBatcher(
        factory,
        catalog,
        quota,
        registry,
        max_attempts=cfg.backfill_max_attempts,
        run_timeout=cfg.backfill_run_timeout_seconds,
        cadence=timedelta(minutes=cfg.backfill_interval_minutes),
        clock=clock,
    )

    logger.debug("Services built")
    return Services(
        quota=quota,
        registry=registry,
        sync=sync,
        queue=queue,
        watcher=watcher,
        backfill=backfill,
        session_factory=factory,
    )
