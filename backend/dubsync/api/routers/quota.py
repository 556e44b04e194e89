"""
Catalog API quota endpoints.
"""

from fastapi import APIRouter, Depends, Query

from dubsync.api.deps import get_services
from dubsync.schemas.quota import QuotaStatus
from dubsync.services.container import Services

router = APIRouter(prefix="/api/quota", tags=["Quota"])


@router.get("", response_model=QuotaStatus, summary="Get quota status")
def get_quota(services: Services = Depends(get_services)) -> QuotaStatus:
    """Consumption against the daily budget, totalled and per API key."""
    return services.quota.get_status()


@router.post("/reset", response_model=QuotaStatus, summary="Reset quota window")
def reset_quota(
    key: str | None = Query(default=None, description="Reset only this API key"),
    services: Services = Depends(get_services),
) -> QuotaStatus:
    """
    Operator reset of the current quota window.

    Args:
        key: API key id to reset; every key is reset when omitted

    Returns:
        QuotaStatus: State after the reset
    """
    return services.quota.reset_window(key)
