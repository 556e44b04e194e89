"""
Backfill Batcher.

Resolves durations for videos that were stored without one, a bounded batch
at a time. Records are taken oldest first so repeated batches make steady,
non-overlapping progress; a record that keeps failing drops out once it has
used up its attempts.
"""

from datetime import timedelta

import sqlalchemy as sa

from dubsync.core.clock import Clock, utcnow
from dubsync.core.db import SessionFactory, session_scope
from dubsync.core.exceptions import (
    AlreadyRunningError,
    DubSyncError,
    ExternalServiceError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
)
from dubsync.core.logging import get_logger
from dubsync.models import Video
from dubsync.schemas.backfill import BackfillResult
from dubsync.schemas.catalog import CatalogItemDetail
from dubsync.schemas.tasks import Lease
from dubsync.services.interfaces import CatalogClient
from dubsync.services.quota_service import QUOTA_COSTS, ApiKeyPool, reserve_and_call
from dubsync.services.task_status_service import TaskName, TaskStatusRegistry

logger = get_logger(__name__)


class BackfillBatcher:
    def __init__(
        self,
        session_factory: SessionFactory,
        catalog: CatalogClient,
        quota: ApiKeyPool,
        registry: TaskStatusRegistry,
        max_attempts: int = 3,
        run_timeout: float | None = None,
        cadence: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._quota = quota
        self._registry = registry
        self.max_attempts = max_attempts
        self.run_timeout = run_timeout
        self.cadence = cadence
        self._clock = clock

    def _eligible(self):
        return sa.and_(
            Video.duration_seconds.is_(None),
            Video.backfill_attempts < self.max_attempts,
        )

    def count_remaining(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(sa.select(sa.func.count(Video.id)).where(self._eligible()))

    async def run_batch(self, max_items: int) -> BackfillResult:
        """
        Resolve up to ``max_items`` videos missing a duration.

        Args:
            max_items: Batch size

        Returns:
            BackfillResult: Counts for this batch and the eligible records left

        Raises:
            ValidationError: max_items is below 1
        """
        if max_items is None or max_items < 1:
            raise ValidationError(f"max_items must be at least 1, got {max_items}")

        async def body(lease: Lease) -> BackfillResult:
            return await self._run(max_items)

        try:
            return await self._registry.run_exclusive(
                TaskName.BACKFILL, body, cadence=self.cadence, timeout=self.run_timeout
            )
        except AlreadyRunningError:
            logger.info("Backfill already running; skipping")
            return BackfillResult(outcome="skipped", remaining=self.count_remaining())
        except TimeoutError:
            logger.error(f"Backfill timed out after {self.run_timeout}s")
            return BackfillResult(
                outcome="failed",
                errors=[f"Timed out after {self.run_timeout}s"],
                remaining=self.count_remaining(),
            )
        except PersistenceError as e:
            logger.error(f"Backfill aborted on storage failure: {e}")
            return BackfillResult(outcome="failed", errors=[f"Persistence failure: {e}"])
        except DubSyncError as e:
            logger.error(f"Backfill failed: {e}")
            return BackfillResult(outcome="failed", errors=[str(e)])

    async def _run(self, max_items: int) -> BackfillResult:
        with session_scope(self._session_factory) as session:
            batch = session.execute(
                sa.select(Video.id, Video.external_id)
                .where(self._eligible())
                .order_by(Video.created_at, Video.id)
                .limit(max_items)
            ).all()

        result = BackfillResult(outcome="succeeded")
        logger.info(f"Backfilling {len(batch)} videos")

        for video_id, external_id in batch:
            try:
                detail = await reserve_and_call(
                    self._quota,
                    QUOTA_COSTS["videos.list"],
                    lambda api_key: self._catalog.get_item_detail(external_id, api_key=api_key),
                )
                if detail.duration_seconds is None:
                    raise ExternalServiceError(f"No duration reported for {external_id}")
            except QuotaExceededError as e:
                logger.warning(f"Backfill stopped: {e}")
                result.quota_exhausted = True
                break
            except ExternalServiceError as e:
                self._record_failure(video_id, str(e))
                result.processed += 1
                result.failed += 1
                result.errors.append(f"{external_id}: {e}")
                continue

            self._apply(video_id, detail)
            result.processed += 1
            result.updated += 1

        result.remaining = self.count_remaining()
        logger.info(
            f"Backfill batch: {result.updated} updated, {result.failed} failed, "
            f"{result.remaining} remaining"
        )
        return result

    def _apply(self, video_id: str, detail: CatalogItemDetail) -> None:
        with session_scope(self._session_factory) as session:
            video = session.get(Video, video_id)
            if video is None:
                return
            video.duration_seconds = detail.duration_seconds
            video.title = video.title or detail.title
            video.description = video.description or detail.description
            video.thumbnail_url = video.thumbnail_url or detail.thumbnail_url
            video.published_at = video.published_at or detail.published_at
            video.channel_id = video.channel_id or detail.channel_id
            video.channel_title = video.channel_title or detail.channel_title
            video.backfill_error = None
            video.updated_at = self._clock()

    def _record_failure(self, video_id: str, error: str) -> None:
        logger.warning(f"Backfill of {video_id} failed: {error}")
        with session_scope(self._session_factory) as session:
            session.execute(
                sa.update(Video)
                .where(Video.id == video_id)
                .values(
                    backfill_attempts=Video.backfill_attempts + 1,
                    backfill_error=error,
                    updated_at=self._clock(),
                )
                .execution_options(synchronize_session=False)
            )
