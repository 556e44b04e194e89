"""
Translation Submission Queue.

The single gate for every change to ``Video.translation_status``:

    none -> pending -> processing -> completed | failed
    failed -> pending   (user-initiated retry)

User submissions are synchronous and report failures straight back to the
caller. Completion notices from the watcher enter through ``apply_completion``;
the expiry sweep moves submissions that never resolved to ``failed``.
"""

from datetime import datetime, timedelta

import sqlalchemy as sa

from dubsync.core.clock import Clock, utcnow
from dubsync.core.db import SessionFactory, session_scope
from dubsync.core.exceptions import (
    AlreadyInFlightError,
    AlreadyRunningError,
    DubSyncError,
    DurationUnknownError,
    NotFoundError,
    SubmissionFailedError,
    ValidationError,
    VideoTooLongError,
)
from dubsync.core.logging import get_logger
from dubsync.models import TranslationStatus, Video
from dubsync.schemas.translation import (
    CompletionDisposition,
    CompletionEvent,
    ExpiryResult,
    QueueStatus,
    SubmissionAccepted,
)
from dubsync.services.interfaces import SubmissionClient
from dubsync.services.task_status_service import TaskName, TaskStatusRegistry

logger = get_logger(__name__)

MAX_DURATION_SECONDS = 1800

RETRYABLE = (TranslationStatus.NONE, TranslationStatus.FAILED)


class TranslationSubmissionQueue:
    """Per-video translation state machine and dubbing-service dispatch."""

    def __init__(
        self,
        session_factory: SessionFactory,
        submission_client: SubmissionClient,
        registry: TaskStatusRegistry | None = None,
        max_duration_seconds: int = MAX_DURATION_SECONDS,
        pending_timeout: timedelta = timedelta(minutes=30),
        processing_timeout: timedelta = timedelta(hours=48),
        expiry_cadence: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._client = submission_client
        self._registry = registry
        self.max_duration_seconds = max_duration_seconds
        self.pending_timeout = pending_timeout
        self.processing_timeout = processing_timeout
        self.expiry_cadence = expiry_cadence
        self._clock = clock

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, video_id: str) -> SubmissionAccepted:
        """
        Submit a video for dubbing.

        Args:
            video_id: Video ID

        Returns:
            SubmissionAccepted: The video is now ``processing`` with a token

        Raises:
            ValidationError: video_id is empty
            NotFoundError: No such video
            DurationUnknownError: Duration has not been resolved yet
            VideoTooLongError: Duration is at or above the limit
            AlreadyInFlightError: Status is not ``none`` or ``failed``
            SubmissionFailedError: The dubbing service rejected the submission
        """
        if not video_id or not video_id.strip():
            raise ValidationError("video_id is required")

        now = self._clock()
        with session_scope(self._session_factory) as session:
            video = session.get(Video, video_id)
            if video is None:
                raise NotFoundError("Video", video_id)
            if video.duration_seconds is None:
                raise DurationUnknownError(video_id, self.max_duration_seconds)
            if video.duration_seconds >= self.max_duration_seconds:
                raise VideoTooLongError(video_id, video.duration_seconds, self.max_duration_seconds)
            if video.translation_status not in RETRYABLE:
                raise AlreadyInFlightError(video_id, video.translation_status)

            external_id, title = video.external_id, video.title

            # Only one concurrent submit can win this conditional update
            claimed = (
                session.execute(
                    sa.update(Video)
                    .where(Video.id == video_id, Video.translation_status.in_(RETRYABLE))
                    .values(
                        translation_status=TranslationStatus.PENDING,
                        submission_token=None,
                        translation_error=None,
                        translated_video_url=None,
                        submitted_at=now,
                        translation_finished_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                == 1
            )

        if not claimed:
            raise AlreadyInFlightError(video_id, self._current_status(video_id))

        logger.info(f"Submitting video {video_id} ({external_id}) for translation")
        try:
            token = await self._client.submit(external_id, title)
        except Exception as e:
            message = str(e) or type(e).__name__
            self._transition(
                video_id,
                TranslationStatus.PENDING,
                TranslationStatus.FAILED,
                translation_error=message,
                translation_finished_at=self._clock(),
            )
            logger.warning(f"Submission of {video_id} failed: {message}")
            raise SubmissionFailedError(video_id, message) from e

        acknowledged = self._transition(
            video_id,
            TranslationStatus.PENDING,
            TranslationStatus.PROCESSING,
            submission_token=token,
        )
        if not acknowledged:
            message = f"Submission {token} was acknowledged after the video left pending"
            logger.warning(f"{message} (video {video_id})")
            raise SubmissionFailedError(video_id, message)

        logger.info(f"Video {video_id} is processing as {token}")
        return SubmissionAccepted(
            video_id=video_id,
            status=TranslationStatus.PROCESSING,
            submission_token=token,
            submitted_at=now,
        )

    # =========================================================================
    # Completion
    # =========================================================================

    def apply_completion(self, event: CompletionEvent) -> CompletionDisposition:
        """
        Apply a completion notice to the video carrying its token.

        A notice whose token matches nothing may still name its source video
        through ``external_id``; it then applies only to that video while it
        is processing. Re-delivery of a token whose video is already terminal
        is a no-op.
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            video = session.scalars(
                sa.select(Video).where(Video.submission_token == event.token)
            ).first()
            if video is None and event.external_id:
                video = session.scalars(
                    sa.select(Video).where(
                        Video.external_id == event.external_id,
                        Video.translation_status == TranslationStatus.PROCESSING,
                    )
                ).first()
                if video is not None:
                    logger.info(
                        f"Completion {event.token} matched video {video.id} by source {event.external_id}"
                    )
            if video is None:
                logger.info(f"No video matches completion token {event.token}; skipping")
                return CompletionDisposition.UNMATCHED
            if video.translation_status in TranslationStatus.TERMINAL:
                logger.debug(f"Video {video.id} already {video.translation_status}; ignoring {event.token}")
                return CompletionDisposition.ALREADY_TERMINAL
            if video.translation_status != TranslationStatus.PROCESSING:
                logger.warning(
                    f"Video {video.id} is {video.translation_status}; ignoring completion {event.token}"
                )
                return CompletionDisposition.UNMATCHED
            video_id = video.id
            stored_token = video.submission_token

        if event.outcome == "success":
            applied = self._transition(
                video_id,
                TranslationStatus.PROCESSING,
                TranslationStatus.COMPLETED,
                expected_token=stored_token,
                translated_video_url=event.result_url,
                translation_error=None,
                translation_finished_at=event.received_at or now,
            )
        else:
            applied = self._transition(
                video_id,
                TranslationStatus.PROCESSING,
                TranslationStatus.FAILED,
                expected_token=stored_token,
                translation_error=event.detail or "Dubbing service reported a failure",
                translation_finished_at=event.received_at or now,
            )

        if not applied:
            return CompletionDisposition.ALREADY_TERMINAL

        logger.info(f"Video {video_id} translation {event.outcome} ({event.token})")
        return CompletionDisposition.APPLIED

    # =========================================================================
    # Expiry
    # =========================================================================

    def expire_stale(self, now: datetime | None = None) -> ExpiryResult:
        """Fail submissions stuck in pending or processing past their timeouts."""
        now = now or self._clock()
        with session_scope(self._session_factory) as session:
            expired_pending = session.execute(
                sa.update(Video)
                .where(
                    Video.translation_status == TranslationStatus.PENDING,
                    Video.submitted_at <= now - self.pending_timeout,
                )
                .values(
                    translation_status=TranslationStatus.FAILED,
                    translation_error=f"Submission not acknowledged within {self.pending_timeout}",
                    translation_finished_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            expired_processing = session.execute(
                sa.update(Video)
                .where(
                    Video.translation_status == TranslationStatus.PROCESSING,
                    Video.submitted_at <= now - self.processing_timeout,
                )
                .values(
                    translation_status=TranslationStatus.FAILED,
                    translation_error=f"No completion notice within {self.processing_timeout}",
                    translation_finished_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        if expired_pending or expired_processing:
            logger.warning(
                f"Expired {expired_pending} pending and {expired_processing} processing submissions"
            )
        return ExpiryResult(
            outcome="succeeded",
            expired_pending=expired_pending,
            expired_processing=expired_processing,
        )

    async def run_expiry(self) -> ExpiryResult:
        """Run ``expire_stale`` under the translation-expiry lease."""
        if self._registry is None:
            raise ValidationError("Expiry requires a task registry")

        async def body(lease):
            return self.expire_stale()

        try:
            return await self._registry.run_exclusive(
                TaskName.TRANSLATION_EXPIRY, body, cadence=self.expiry_cadence
            )
        except AlreadyRunningError:
            return ExpiryResult(outcome="skipped")
        except DubSyncError as e:
            logger.error(f"Translation expiry failed: {e}")
            return ExpiryResult(outcome="failed")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_queue_status(self) -> QueueStatus:
        with session_scope(self._session_factory) as session:
            counts = dict(
                session.execute(
                    sa.select(Video.translation_status, sa.func.count(Video.id)).group_by(
                        Video.translation_status
                    )
                ).all()
            )
            last_error = session.scalars(
                sa.select(Video.translation_error)
                .where(
                    Video.translation_status == TranslationStatus.FAILED,
                    Video.translation_error.is_not(None),
                )
                .order_by(Video.translation_finished_at.desc(), Video.updated_at.desc())
                .limit(1)
            ).first()

        return QueueStatus(
            pending_count=counts.get(TranslationStatus.PENDING, 0),
            processing_count=counts.get(TranslationStatus.PROCESSING, 0),
            failed_count=counts.get(TranslationStatus.FAILED, 0),
            completed_count=counts.get(TranslationStatus.COMPLETED, 0),
            last_error=last_error,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(
        self,
        video_id: str,
        current: str,
        target: str,
        expected_token: str | None = None,
        **values,
    ) -> bool:
        """Conditionally move a video from ``current`` to ``target``."""
        if not TranslationStatus.can_transition(current, target):
            raise ValidationError(f"Illegal translation transition {current} -> {target}")

        conditions = [Video.id == video_id, Video.translation_status == current]
        if expected_token is not None:
            conditions.append(Video.submission_token == expected_token)

        with session_scope(self._session_factory) as session:
            result = session.execute(
                sa.update(Video)
                .where(*conditions)
                .values(translation_status=target, updated_at=self._clock(), **values)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    def _current_status(self, video_id: str) -> str:
        with session_scope(self._session_factory) as session:
            status = session.scalar(sa.select(Video.translation_status).where(Video.id == video_id))
        return status or TranslationStatus.NONE
