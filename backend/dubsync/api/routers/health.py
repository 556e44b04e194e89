"""
Health check endpoint.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, status

from dubsync import __version__
from dubsync.api.deps import get_services
from dubsync.core.db import check_db_health
from dubsync.core.logging import get_logger
from dubsync.schemas.health import HealthResponse
from dubsync.services.container import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
def health_check(services: Services = Depends(get_services)) -> HealthResponse:
    """
    Report database reachability and the state of the background jobs.

    Returns:
        HealthResponse: Overall status and per-component statuses
    """
    session = services.session_factory()
    try:
        database = "ok" if check_db_health(session.get_bind()) else "down"
    finally:
        session.close()

    components = {"database": database}
    if database == "ok":
        for view in services.registry.get_all_statuses():
            components[f"task:{view.task_name}"] = "stale" if view.stale else view.state

    overall = "ok" if database == "ok" and "stale" not in components.values() else "degraded"
    return HealthResponse(
        status=overall,
        timestamp=datetime.now(UTC).isoformat(),
        services=components,
        version=__version__,
    )
