"""
Celery tasks.

Thin wrappers that build the service container, run one async operation and
return its report as a dict. Job-level failures are already recorded on the
task status record by the services themselves.
"""

import asyncio
import logging

from celery import Task

from dubsync.core.config import settings
from dubsync.core.db import init_db
from dubsync.core.logging import get_logger, log_with_context
from dubsync.services.container import build_services
from dubsync.workers.celery_app import celery_app

logger = get_logger(__name__)

_db_ready = False


def run_async(coro):
    """Run an async coroutine in a synchronous context."""
    return asyncio.run(coro)


def get_services():
    """Build services for one task invocation, creating tables on first use."""
    global _db_ready
    if not _db_ready:
        init_db()
        _db_ready = True
    return build_services()


class BaseTask(Task):
    """
    Base task class with common logging.
    """

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Task {self.name} failed: {exc}",
            exc_info=True,
            extra={"extra": {"task_id": task_id, "task_args": args, "task_kwargs": kwargs}},
        )

    def on_success(self, retval, task_id, args, kwargs):
        outcome = retval.get("outcome") if isinstance(retval, dict) else None
        log_with_context(
            logger, logging.INFO, f"Task {self.name} finished: {outcome}", task_id=task_id
        )

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        log_with_context(
            logger, logging.WARNING, f"Task {self.name} retrying: {exc}", task_id=task_id
        )


@celery_app.task(bind=True, base=BaseTask, name="dubsync.workers.tasks.sync_subscriptions_task")
def sync_subscriptions_task(self, subscription_id: str | None = None) -> dict:
    """
    Sync one or all subscriptions.

    Args:
        subscription_id: Subscription to sync (all if None)

    Returns:
        dict: SyncReport
    """
    services = get_services()
    if subscription_id:
        report = run_async(services.sync.sync_one(subscription_id))
    else:
        report = run_async(services.sync.sync_all())
    return report.model_dump(mode="json")


@celery_app.task(bind=True, base=BaseTask, name="dubsync.workers.tasks.check_completions_task")
def check_completions_task(self) -> dict:
    """Poll the mailbox once for completion notices."""
    services = get_services()
    return run_async(services.watcher.poll_once()).model_dump(mode="json")


@celery_app.task(bind=True, base=BaseTask, name="dubsync.workers.tasks.backfill_missing_data_task")
def backfill_missing_data_task(self, max_items: int | None = None) -> dict:
    """Resolve missing durations, one batch per invocation."""
    services = get_services()
    result = run_async(services.backfill.run_batch(max_items or settings.backfill_batch_size))
    return result.model_dump(mode="json")


@celery_app.task(
    bind=True, base=BaseTask, name="dubsync.workers.tasks.expire_stale_translations_task"
)
def expire_stale_translations_task(self) -> dict:
    """Fail submissions that never received a completion notice."""
    services = get_services()
    return run_async(services.queue.run_expiry()).model_dump(mode="json")
