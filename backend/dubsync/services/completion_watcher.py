"""
Completion Watcher.

Polls the notification mailbox for dubbing-service completion notices and
hands them to the submission queue. Delivery is at-least-once: the UID marker
only advances over a contiguous run of handled messages, so a message that
failed to parse is fetched again on the next poll, along with anything after
it that was already applied (those re-applications are no-ops).

A notice whose token matches no submission is retried once against the
source video named on its share page.
"""

from datetime import timedelta

from dubsync.core.clock import Clock, utcnow
from dubsync.core.exceptions import AlreadyRunningError, CompletionParseError, DubSyncError
from dubsync.core.logging import get_logger
from dubsync.schemas.completion import MailboxConfig, MailboxMarker, MailboxMessage, PollResult
from dubsync.schemas.tasks import Lease
from dubsync.schemas.translation import CompletionDisposition, CompletionEvent
from dubsync.services.completion_parser import parse_message
from dubsync.services.interfaces import MailboxClient, SharePageResolver
from dubsync.services.task_status_service import TaskName, TaskStatusRegistry
from dubsync.services.translation_queue import TranslationSubmissionQueue

logger = get_logger(__name__)


class CompletionWatcher:
    """Reconciles mailbox notifications with in-flight submissions."""

    def __init__(
        self,
        mailbox: MailboxClient,
        queue: TranslationSubmissionQueue,
        registry: TaskStatusRegistry,
        share_resolver: SharePageResolver | None = None,
        folder: str = "INBOX",
        sender_domain: str = "heygen.com",
        initial_lookback: timedelta = timedelta(days=3),
        max_parse_attempts: int = 5,
        fetch_limit: int = 100,
        run_timeout: float | None = None,
        cadence: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        self._mailbox = mailbox
        self._queue = queue
        self._registry = registry
        self._share_resolver = share_resolver
        self.folder = folder
        self.sender_domain = sender_domain
        self.initial_lookback = initial_lookback
        self.max_parse_attempts = max_parse_attempts
        self.fetch_limit = fetch_limit
        self.run_timeout = run_timeout
        self.cadence = cadence
        self._clock = clock

    async def poll_once(self) -> PollResult:
        """
        Fetch and apply new completion notices under the completion-watch lease.

        Never raises for job-level failures; they are recorded on the task
        status and reflected in the result's outcome.
        """
        try:
            return await self._registry.run_exclusive(
                TaskName.COMPLETION_WATCH,
                self._poll,
                cadence=self.cadence,
                timeout=self.run_timeout,
            )
        except AlreadyRunningError:
            logger.debug("Completion watch already running; skipping tick")
            return PollResult(outcome="skipped")
        except TimeoutError:
            logger.error(f"Completion watch timed out after {self.run_timeout}s")
            return PollResult(outcome="failed", error=f"Timed out after {self.run_timeout}s")
        except DubSyncError as e:
            logger.error(f"Completion watch failed: {e}")
            return PollResult(outcome="failed", error=str(e))

    async def _poll(self, lease: Lease) -> PollResult:
        checkpoint = lease.checkpoint
        marker = MailboxMarker(
            uid_validity=checkpoint.get("uid_validity"),
            last_uid=checkpoint.get("last_uid"),
        )
        failures: dict[str, int] = dict(checkpoint.get("failures") or {})

        config = MailboxConfig(
            folder=self.folder,
            since=self._clock() - self.initial_lookback,
            limit=self.fetch_limit,
        )
        batch = await self._mailbox.fetch_since(marker, config)

        if marker.uid_validity is not None and batch.uid_validity != marker.uid_validity:
            logger.warning(
                f"Mailbox UIDVALIDITY changed {marker.uid_validity} -> {batch.uid_validity}; "
                "resetting marker"
            )
            marker = MailboxMarker(uid_validity=batch.uid_validity)
            failures = {}

        result = PollResult(outcome="succeeded")
        last_uid = marker.last_uid
        contiguous = True

        for message in sorted(batch.messages, key=lambda m: m.uid):
            if last_uid is not None and message.uid <= last_uid:
                continue
            handled = await self._handle(message, result, failures)
            if not handled:
                contiguous = False
            elif contiguous:
                last_uid = message.uid

        floor = last_uid or 0
        failures = {uid: count for uid, count in failures.items() if int(uid) > floor}

        self._registry.save_checkpoint(
            lease,
            {"uid_validity": batch.uid_validity, "last_uid": last_uid, "failures": failures},
        )
        result.marker = last_uid

        logger.info(
            f"Completion poll: {result.processed} applied, {result.unmatched} unmatched, "
            f"{result.skipped} skipped, {result.errors} errors, marker {last_uid}"
        )
        return result

    async def _handle(self, message: MailboxMessage, result: PollResult, failures: dict[str, int]) -> bool:
        """Process one message. Returns True if the marker may move past it."""
        try:
            event = parse_message(message, self.sender_domain)
        except CompletionParseError as e:
            key = str(message.uid)
            failures[key] = failures.get(key, 0) + 1
            result.errors += 1
            if failures[key] >= self.max_parse_attempts:
                logger.error(
                    f"Abandoning message {message.uid} after {failures[key]} parse failures: {e}"
                )
                return True
            logger.warning(f"Parse failure {failures[key]}/{self.max_parse_attempts}: {e}")
            return False

        if event is None:
            result.skipped += 1
            return True

        disposition = self._queue.apply_completion(event)
        if disposition == CompletionDisposition.UNMATCHED:
            disposition = await self._apply_by_source(event)
        if disposition == CompletionDisposition.APPLIED:
            result.processed += 1
        elif disposition == CompletionDisposition.UNMATCHED:
            result.unmatched += 1
        return True

    async def _apply_by_source(self, event: CompletionEvent) -> CompletionDisposition:
        """Retry an unmatched notice against the video its share page names."""
        if self._share_resolver is None or not event.share_url:
            return CompletionDisposition.UNMATCHED
        external_id = await self._share_resolver.resolve_external_id(event.share_url)
        if not external_id:
            return CompletionDisposition.UNMATCHED
        return self._queue.apply_completion(event.model_copy(update={"external_id": external_id}))
