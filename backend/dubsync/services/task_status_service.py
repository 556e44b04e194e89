"""
Task Status Registry.

Persisted run state for every named background job. ``try_acquire`` is the
only mutual-exclusion mechanism between runs: a conditional UPDATE moves the
record to ``running`` unless another live lease holds it. A lease left behind
by a crashed process becomes reclaimable once it is older than the staleness
threshold.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4

import sqlalchemy as sa

from dubsync.core.clock import Clock, utcnow
from dubsync.core.db import SessionFactory, create_if_absent, session_scope
from dubsync.core.exceptions import AlreadyRunningError, NotFoundError, ValidationError
from dubsync.core.logging import JobLogContext, get_logger
from dubsync.models import TaskState, TaskStatus
from dubsync.schemas.tasks import Lease, TaskStatusView

logger = get_logger(__name__)

T = TypeVar("T")


class TaskName:
    """Names of the leased background jobs."""

    SYNC = "sync"
    COMPLETION_WATCH = "completion-watch"
    BACKFILL = "backfill"
    TRANSLATION_EXPIRY = "translation-expiry"

    ALL = (SYNC, COMPLETION_WATCH, BACKFILL, TRANSLATION_EXPIRY)


class TaskStatusRegistry:
    """Single-flight guard and run history for named jobs."""

    def __init__(
        self,
        session_factory: SessionFactory,
        stale_after: timedelta = timedelta(minutes=60),
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.stale_after = stale_after
        self._clock = clock

    # =========================================================================
    # Leases
    # =========================================================================

    def try_acquire(self, task_name: str) -> Lease:
        """
        Acquire the run lease for a task.

        Args:
            task_name: Name of the job

        Returns:
            Lease: Token the run must present on release

        Raises:
            ValidationError: If task_name is empty
            AlreadyRunningError: If a live lease is held by another run
        """
        if not task_name:
            raise ValidationError("task_name is required")

        now = self._clock()
        create_if_absent(
            self._session_factory,
            TaskStatus(task_name=task_name, state=TaskState.IDLE, run_count=0, updated_at=now),
        )

        token = str(uuid4())
        cutoff = now - self.stale_after

        with session_scope(self._session_factory) as session:
            previous = session.get(TaskStatus, task_name)
            was_running = previous.state == TaskState.RUNNING
            previous_started = previous.started_at

            result = session.execute(
                sa.update(TaskStatus)
                .where(
                    TaskStatus.task_name == task_name,
                    sa.or_(
                        TaskStatus.state != TaskState.RUNNING,
                        TaskStatus.started_at.is_(None),
                        TaskStatus.started_at <= cutoff,
                    ),
                )
                .values(
                    state=TaskState.RUNNING,
                    lease_token=token,
                    started_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            acquired = result.rowcount == 1

            if acquired:
                record = session.scalars(
                    sa.select(TaskStatus)
                    .where(TaskStatus.task_name == task_name)
                    .execution_options(populate_existing=True)
                ).one()
                checkpoint = _decode_checkpoint(record.checkpoint)
            else:
                current = session.scalars(
                    sa.select(TaskStatus)
                    .where(TaskStatus.task_name == task_name)
                    .execution_options(populate_existing=True)
                ).one()
                holder_started = current.started_at

        if not acquired:
            logger.info(f"Task {task_name} already running since {holder_started}")
            raise AlreadyRunningError(task_name, holder_started)

        if was_running:
            logger.warning(
                f"Reclaimed stale lease for {task_name} (started {previous_started}, "
                f"threshold {self.stale_after})"
            )
        logger.debug(f"Acquired lease {token} for {task_name}")
        return Lease(task_name=task_name, token=token, started_at=now, checkpoint=checkpoint)

    def release(
        self,
        lease: Lease,
        outcome: str,
        error: str | None = None,
        cadence: timedelta | None = None,
    ) -> bool:
        """
        Release a lease with the run's outcome.

        Args:
            lease: Lease returned by ``try_acquire``
            outcome: ``succeeded`` or ``failed``
            error: Error recorded as ``last_error`` on failure
            cadence: Interval until the next scheduled run

        Returns:
            bool: False if the lease was superseded and nothing was written
        """
        if outcome not in (TaskState.SUCCEEDED, TaskState.FAILED):
            raise ValidationError(f"Invalid run outcome: {outcome}")

        now = self._clock()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                sa.update(TaskStatus)
                .where(
                    TaskStatus.task_name == lease.task_name,
                    TaskStatus.lease_token == lease.token,
                )
                .values(
                    state=outcome,
                    lease_token=None,
                    finished_at=now,
                    last_error=error if outcome == TaskState.FAILED else None,
                    next_scheduled_at=now + cadence if cadence else None,
                    run_count=TaskStatus.run_count + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

        if result.rowcount != 1:
            logger.warning(
                f"Ignoring release of superseded lease {lease.token} for {lease.task_name}"
            )
            return False

        if outcome == TaskState.FAILED:
            logger.warning(f"Task {lease.task_name} failed: {error}")
        else:
            logger.info(f"Task {lease.task_name} succeeded")
        return True

    def save_checkpoint(self, lease: Lease, data: dict[str, Any]) -> bool:
        """Persist task-specific state while the lease is held."""
        now = self._clock()
        with session_scope(self._session_factory) as session:
            result = session.execute(
                sa.update(TaskStatus)
                .where(
                    TaskStatus.task_name == lease.task_name,
                    TaskStatus.lease_token == lease.token,
                )
                .values(checkpoint=json.dumps(data, default=str), updated_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount != 1:
            logger.warning(f"Checkpoint for {lease.task_name} dropped: lease superseded")
            return False
        lease.checkpoint = data
        return True

    def force_release(self, task_name: str, reason: str) -> TaskStatusView:
        """
        Operator action: mark a running task failed and drop its lease.

        Raises:
            NotFoundError: If the task has never been recorded
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            record = session.get(TaskStatus, task_name)
            if record is None:
                raise NotFoundError("Task", task_name)
            if record.state == TaskState.RUNNING:
                record.state = TaskState.FAILED
                record.lease_token = None
                record.finished_at = now
                record.last_error = reason
                record.updated_at = now
                logger.warning(f"Task {task_name} force-released: {reason}")
            session.flush()
            return self._to_view(record, now)

    async def run_exclusive(
        self,
        task_name: str,
        body: Callable[[Lease], Awaitable[T]],
        cadence: timedelta | None = None,
        timeout: float | None = None,
        error_of: Callable[[T], str | None] | None = None,
    ) -> T:
        """
        Run ``body`` while holding the task's lease.

        The lease is released ``failed`` if the body raises, times out or is
        cancelled; otherwise ``error_of(result)`` decides whether the run is
        recorded as failed.

        Raises:
            AlreadyRunningError: If the lease is held elsewhere
            TimeoutError: If the body exceeds ``timeout`` seconds
        """
        lease = self.try_acquire(task_name)
        with JobLogContext(task_name=task_name, run_id=lease.token):
            try:
                result = await asyncio.wait_for(body(lease), timeout=timeout)
            except TimeoutError:
                self.release(lease, TaskState.FAILED, f"Timed out after {timeout}s", cadence)
                raise
            except asyncio.CancelledError:
                self.release(lease, TaskState.FAILED, "Cancelled", cadence)
                raise
            except Exception as e:
                self.release(lease, TaskState.FAILED, f"{type(e).__name__}: {e}", cadence)
                raise

            error = error_of(result) if error_of else None
            if error:
                self.release(lease, TaskState.FAILED, error, cadence)
            else:
                self.release(lease, TaskState.SUCCEEDED, None, cadence)
            return result

    # =========================================================================
    # Queries
    # =========================================================================

    def get_status(self, task_name: str) -> TaskStatusView:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            record = session.get(TaskStatus, task_name)
            if record is None:
                if task_name not in TaskName.ALL:
                    raise NotFoundError("Task", task_name)
                return TaskStatusView(task_name=task_name, state=TaskState.IDLE)
            return self._to_view(record, now)

    def get_all_statuses(self) -> list[TaskStatusView]:
        """Every known task, including ones that have never run."""
        now = self._clock()
        with session_scope(self._session_factory) as session:
            records = {r.task_name: r for r in session.scalars(sa.select(TaskStatus))}
            views = [self._to_view(record, now) for record in records.values()]

        for name in TaskName.ALL:
            if name not in records:
                views.append(TaskStatusView(task_name=name, state=TaskState.IDLE))
        return sorted(views, key=lambda v: v.task_name)

    def _to_view(self, record: TaskStatus, now: datetime) -> TaskStatusView:
        stale = (
            record.state == TaskState.RUNNING
            and record.started_at is not None
            and now - record.started_at >= self.stale_after
        )
        return TaskStatusView(
            task_name=record.task_name,
            state=record.state,
            started_at=record.started_at,
            finished_at=record.finished_at,
            next_scheduled_at=record.next_scheduled_at,
            last_error=record.last_error,
            run_count=record.run_count,
            stale=stale,
        )


def _decode_checkpoint(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Discarding unreadable task checkpoint")
        return {}
    return data if isinstance(data, dict) else {}
