"""
FastAPI dependencies and error mapping.
"""

from functools import lru_cache

from fastapi import status

from dubsync.core.exceptions import (
    AlreadyInFlightError,
    AlreadyRunningError,
    DubSyncError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    QuotaExceededError,
    ValidationError,
    VideoTooLongError,
)
from dubsync.services.container import Services, build_services

# First match wins
ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (VideoTooLongError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AlreadyInFlightError, status.HTTP_409_CONFLICT),
    (AlreadyRunningError, status.HTTP_409_CONFLICT),
    (QuotaExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: DubSyncError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@lru_cache
def get_services() -> Services:
    """
    Service container shared by all requests.

    Overridden in tests through ``app.dependency_overrides``.
    """
    return build_services()
