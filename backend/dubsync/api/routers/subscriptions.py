"""
Subscription management and sync endpoints.
"""

from fastapi import APIRouter, Depends, Response, status

from dubsync.api.deps import get_services
from dubsync.core.logging import get_logger
from dubsync.schemas.sync import SubscriptionCreate, SubscriptionResponse, SyncReport
from dubsync.services.container import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


@router.get("", response_model=list[SubscriptionResponse], summary="List subscriptions")
def list_subscriptions(services: Services = Depends(get_services)) -> list[SubscriptionResponse]:
    return services.sync.list_subscriptions()


@router.post(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add subscription",
)
def add_subscription(
    request: SubscriptionCreate, services: Services = Depends(get_services)
) -> SubscriptionResponse:
    """
    Follow a channel or playlist.

    Args:
        request: Source type, catalog ID and display name

    Returns:
        SubscriptionResponse: The created subscription

    Raises:
        ValidationError: Already subscribed (400)
    """
    return services.sync.add_subscription(request.source_type, request.source_id, request.name)


@router.delete(
    "/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove subscription",
)
def remove_subscription(subscription_id: str, services: Services = Depends(get_services)) -> Response:
    services.sync.remove_subscription(subscription_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sync", response_model=SyncReport, summary="Sync all subscriptions")
async def sync_all(services: Services = Depends(get_services)) -> SyncReport:
    """
    Run a sync pass over every subscription now.

    A run already in progress yields a report with outcome ``skipped``.
    """
    return await services.sync.sync_all()


@router.post("/{subscription_id}/sync", response_model=SyncReport, summary="Sync one subscription")
async def sync_one(subscription_id: str, services: Services = Depends(get_services)) -> SyncReport:
    return await services.sync.sync_one(subscription_id)
