"""
Celery application configuration.

Celery beat is the periodic trigger for the background jobs; each task
acquires its own lease, so overlapping ticks are skipped rather than queued
behind one another.
"""

from celery import Celery
from celery.signals import setup_logging

from dubsync.core.config import settings
from dubsync.core.logging import configure_logging, get_logger

logger = get_logger(__name__)


# =============================================================================
# Celery Application
# =============================================================================

celery_app = Celery(
    "dubsync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["dubsync.workers.tasks"],
)


# =============================================================================
# Celery Configuration
# =============================================================================

celery_app.conf.update(
    # Task execution
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task time limits
    task_time_limit=settings.celery_task_time_limit,
    task_soft_time_limit=settings.celery_task_time_limit - 60,

    # Worker configuration
    worker_prefetch_multiplier=settings.celery_worker_prefetch_multiplier,

    # Result backend
    result_expires=86400,  # 24 hours

    # Broker connection
    broker_connection_retry_on_startup=True,

    # Periodic jobs; each interval is also recorded as next_scheduled_at on release
    beat_schedule={
        "sync-subscriptions": {
            "task": "dubsync.workers.tasks.sync_subscriptions_task",
            "schedule": settings.sync_interval_minutes * 60.0,
        },
        "check-completions": {
            "task": "dubsync.workers.tasks.check_completions_task",
            "schedule": float(settings.mailbox_poll_interval_seconds),
        },
        "backfill-missing-data": {
            "task": "dubsync.workers.tasks.backfill_missing_data_task",
            "schedule": settings.backfill_interval_minutes * 60.0,
        },
        "expire-stale-translations": {
            "task": "dubsync.workers.tasks.expire_stale_translations_task",
            "schedule": settings.translation_expiry_interval_minutes * 60.0,
        },
    },
)


# =============================================================================
# Logging Configuration
# =============================================================================


@setup_logging.connect
def setup_celery_logging(**kwargs):
    """Use the application's structured logging instead of Celery's default."""
    configure_logging()
    logger.info("Celery logging configured")
