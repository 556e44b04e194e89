"""
Subscription Sync Engine.

Pulls newly published videos for every subscription from the catalog API and
upserts them by external ID. Quota is reserved before every catalog call and
a key the API reports as spent is swapped for the next one in the pool;
running out of quota ends the run early but is not a failure.
"""

import asyncio
from datetime import timedelta

import sqlalchemy as sa

from dubsync.core.clock import Clock, utcnow
from dubsync.core.db import SessionFactory, session_scope
from dubsync.core.exceptions import (
    AlreadyRunningError,
    CatalogError,
    CatalogNotFoundError,
    DubSyncError,
    NotFoundError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from dubsync.core.logging import get_logger
from dubsync.models import SourceType, Subscription, TranslationStatus, Video
from dubsync.schemas.catalog import CatalogItem, CatalogItemDetail
from dubsync.schemas.sync import SubscriptionResponse, SyncReport
from dubsync.services.interfaces import CatalogClient
from dubsync.services.quota_service import QUOTA_COSTS, ApiKeyPool, reserve_and_call
from dubsync.services.task_status_service import TaskName, TaskStatusRegistry

logger = get_logger(__name__)


class _Stop(Exception):
    """Internal signal: stop taking new work in this run."""


class SubscriptionSyncEngine:
    """Quota-aware catalog sync for all subscriptions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        catalog: CatalogClient,
        quota: ApiKeyPool,
        registry: TaskStatusRegistry,
        concurrency: int = 2,
        max_videos_per_subscription: int = 50,
        initial_max_videos: int = 3,
        refresh_known_videos: bool = True,
        run_timeout: float | None = None,
        cadence: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._quota = quota
        self._registry = registry
        self.concurrency = max(1, concurrency)
        self.max_videos_per_subscription = max_videos_per_subscription
        self.initial_max_videos = initial_max_videos
        self.refresh_known_videos = refresh_known_videos
        self.run_timeout = run_timeout
        self.cadence = cadence
        self._clock = clock

    # =========================================================================
    # Subscription management
    # =========================================================================

    def add_subscription(self, source_type: str, source_id: str, name: str) -> SubscriptionResponse:
        """
        Follow a channel or playlist.

        Raises:
            ValidationError: Missing fields, unknown source type, or already subscribed
        """
        source_id = (source_id or "").strip()
        name = (name or "").strip()
        if source_type not in SourceType.ALL:
            raise ValidationError(f"Unknown source type: {source_type}")
        if not source_id or not name:
            raise ValidationError("source_id and name are required")

        now = self._clock()
        with session_scope(self._session_factory) as session:
            exists = session.scalar(
                sa.select(Subscription.id).where(
                    Subscription.source_type == source_type,
                    Subscription.source_id == source_id,
                )
            )
            if exists:
                raise ValidationError(f"Already subscribed to {source_type} {source_id}")
            subscription = Subscription(
                source_type=source_type,
                source_id=source_id,
                name=name,
                created_at=now,
                updated_at=now,
            )
            session.add(subscription)
            session.flush()
            response = SubscriptionResponse.model_validate(subscription)

        logger.info(f"Subscribed to {source_type} {source_id} ({name})")
        return response

    def remove_subscription(self, subscription_id: str) -> None:
        """Stop following a source. Its videos are deleted with it."""
        with session_scope(self._session_factory) as session:
            subscription = session.get(Subscription, subscription_id)
            if subscription is None:
                raise NotFoundError("Subscription", subscription_id)
            session.delete(subscription)
        logger.info(f"Removed subscription {subscription_id}")

    def list_subscriptions(self) -> list[SubscriptionResponse]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                sa.select(Subscription).order_by(Subscription.created_at, Subscription.id)
            ).all()
            return [SubscriptionResponse.model_validate(row) for row in rows]

    # =========================================================================
    # Sync runs
    # =========================================================================

    async def sync_all(self) -> SyncReport:
        """Sync every subscription under the ``sync`` lease."""
        with session_scope(self._session_factory) as session:
            ids = list(
                session.scalars(
                    sa.select(Subscription.id).order_by(Subscription.created_at, Subscription.id)
                )
            )
        return await self._run(ids)

    async def sync_one(self, subscription_id: str) -> SyncReport:
        """
        Sync a single subscription under the ``sync`` lease.

        Raises:
            ValidationError: subscription_id is empty
            NotFoundError: No such subscription
        """
        if not subscription_id or not subscription_id.strip():
            raise ValidationError("subscription_id is required")
        with session_scope(self._session_factory) as session:
            if session.get(Subscription, subscription_id) is None:
                raise NotFoundError("Subscription", subscription_id)
        return await self._run([subscription_id])

    async def _run(self, subscription_ids: list[str]) -> SyncReport:
        started_at = self._clock()
        report = SyncReport(outcome="succeeded", started_at=started_at)

        async def body(lease):
            await self._sync_subscriptions(subscription_ids, report)
            return report

        try:
            await self._registry.run_exclusive(
                TaskName.SYNC,
                body,
                cadence=self.cadence,
                timeout=self.run_timeout,
                error_of=lambda r: "; ".join(r.errors) or None,
            )
        except AlreadyRunningError as e:
            return SyncReport(
                outcome="skipped",
                errors=[str(e)],
                started_at=started_at,
                finished_at=self._clock(),
            )
        except PersistenceError as e:
            logger.error(f"Sync aborted on storage failure: {e}")
            return SyncReport(
                outcome="failed",
                errors=[f"Persistence failure: {e}"],
                started_at=started_at,
                finished_at=self._clock(),
            )
        except TimeoutError:
            logger.error(f"Sync timed out after {self.run_timeout}s")
            report.errors.append(f"Timed out after {self.run_timeout}s")
        except DubSyncError as e:
            logger.error(f"Sync failed: {e}")
            report.errors.append(str(e))

        report.outcome = "failed" if report.errors else "succeeded"
        report.finished_at = self._clock()
        logger.info(
            f"Sync {report.outcome}: {report.subscriptions_synced} subscriptions, "
            f"{report.videos_added} added, {report.videos_updated} updated, "
            f"quota_exhausted={report.quota_exhausted}"
        )
        return report

    async def _sync_subscriptions(self, subscription_ids: list[str], report: SyncReport) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)
        stop = asyncio.Event()

        async def worker(subscription_id: str) -> None:
            async with semaphore:
                if stop.is_set():
                    return
                try:
                    await self._sync_subscription(subscription_id, report, stop)
                except QuotaExceededError as e:
                    logger.warning(f"Quota exhausted during sync of {subscription_id}: {e}")
                    report.quota_exhausted = True
                    stop.set()
                except CatalogError as e:
                    logger.error(f"Catalog error syncing {subscription_id}: {e}")
                    report.errors.append(f"{subscription_id}: {e}")
                except _Stop:
                    return
                except PersistenceError:
                    stop.set()
                    raise

        results = await asyncio.gather(
            *(worker(subscription_id) for subscription_id in subscription_ids),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _sync_subscription(
        self, subscription_id: str, report: SyncReport, stop: asyncio.Event
    ) -> None:
        pass_started = self._clock()
        with session_scope(self._session_factory) as session:
            subscription = session.get(Subscription, subscription_id)
            if subscription is None:
                logger.info(f"Subscription {subscription_id} removed before sync")
                return
            source_type = subscription.source_type
            source_id = subscription.source_id
            name = subscription.name
            published_after = subscription.last_synced_at
            has_videos = (
                session.scalar(
                    sa.select(sa.func.count(Video.id)).where(Video.subscription_id == subscription_id)
                )
                > 0
            )

        cap = self.max_videos_per_subscription if has_videos else self.initial_max_videos
        logger.info(f"Syncing {source_type} {source_id} ({name}), cap {cap}")

        seen = 0
        page_token = None
        while True:
            if stop.is_set():
                raise _Stop()

            page = await reserve_and_call(
                self._quota,
                self._catalog.listing_cost(source_type),
                lambda api_key: self._catalog.list_channel_items(
                    source_type,
                    source_id,
                    page_token=page_token,
                    published_after=published_after,
                    api_key=api_key,
                ),
            )

            for item in page.items:
                if seen >= cap:
                    break
                if stop.is_set():
                    raise _Stop()
                seen += 1
                change = await self._ingest_item(subscription_id, item)
                if change == "added":
                    report.videos_added += 1
                elif change == "updated":
                    report.videos_updated += 1

            if seen >= cap or not page.next_page_token:
                break
            page_token = page.next_page_token

        with session_scope(self._session_factory) as session:
            subscription = session.get(Subscription, subscription_id)
            if subscription is not None:
                subscription.last_synced_at = pass_started
                subscription.updated_at = self._clock()

        report.subscriptions_synced += 1
        logger.info(f"Synced {source_type} {source_id}: {seen} items seen")

    async def _ingest_item(self, subscription_id: str, item: CatalogItem) -> str:
        """Fetch details for a listed item and upsert it. Returns added, updated or skipped."""
        with session_scope(self._session_factory) as session:
            known = session.scalar(sa.select(Video.id).where(Video.external_id == item.external_id))

        if known and not self.refresh_known_videos:
            return "skipped"

        try:
            detail = await reserve_and_call(
                self._quota,
                QUOTA_COSTS["videos.list"],
                lambda api_key: self._catalog.get_item_detail(item.external_id, api_key=api_key),
            )
        except CatalogNotFoundError:
            logger.warning(f"No details for {item.external_id}; storing listing metadata")
            detail = CatalogItemDetail(**item.model_dump())

        return self._upsert(subscription_id, detail)

    def _upsert(self, subscription_id: str, detail: CatalogItemDetail) -> str:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            video = session.scalars(
                sa.select(Video).where(Video.external_id == detail.external_id)
            ).first()

            if video is None:
                session.add(
                    Video(
                        external_id=detail.external_id,
                        subscription_id=subscription_id,
                        title=detail.title,
                        description=detail.description,
                        thumbnail_url=detail.thumbnail_url,
                        published_at=detail.published_at,
                        channel_id=detail.channel_id,
                        channel_title=detail.channel_title,
                        duration_seconds=detail.duration_seconds,
                        translation_status=TranslationStatus.NONE,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return "added"

            # Metadata only; translation fields belong to the submission queue
            video.title = detail.title or video.title
            if detail.description is not None:
                video.description = detail.description
            video.thumbnail_url = detail.thumbnail_url or video.thumbnail_url
            video.published_at = detail.published_at or video.published_at
            video.channel_id = detail.channel_id or video.channel_id
            video.channel_title = detail.channel_title or video.channel_title
            if video.duration_seconds is None and detail.duration_seconds is not None:
                video.duration_seconds = detail.duration_seconds
            if video.subscription_id is None:
                video.subscription_id = subscription_id
            video.updated_at = now
            return "updated"
