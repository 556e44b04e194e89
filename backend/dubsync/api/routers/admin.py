"""
Manual triggers for the background jobs.

The same operations run on a schedule through Celery beat; these endpoints
run them inline and return their reports.
"""

from fastapi import APIRouter, Depends

from dubsync.api.deps import get_services
from dubsync.core.config import settings
from dubsync.schemas.backfill import BackfillRequest, BackfillResult
from dubsync.schemas.completion import PollResult
from dubsync.schemas.translation import ExpiryResult
from dubsync.services.container import Services

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.post("/check-completions", response_model=PollResult, summary="Poll mailbox now")
async def check_completions(services: Services = Depends(get_services)) -> PollResult:
    return await services.watcher.poll_once()


@router.post("/backfill", response_model=BackfillResult, summary="Run one backfill batch")
async def backfill(
    request: BackfillRequest | None = None, services: Services = Depends(get_services)
) -> BackfillResult:
    """
    Resolve missing durations for one batch of videos.

    Args:
        request: Optional batch size (defaults to the configured batch size)

    Raises:
        ValidationError: max_items below 1 (400)
    """
    max_items = request.max_items if request and request.max_items is not None else settings.backfill_batch_size
    return await services.backfill.run_batch(max_items)


@router.post("/expire-translations", response_model=ExpiryResult, summary="Expire stale submissions")
async def expire_translations(services: Services = Depends(get_services)) -> ExpiryResult:
    return await services.queue.run_expiry()
