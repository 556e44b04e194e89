"""
Pytest configuration for integration tests.

Runs the FastAPI app and the Celery tasks against the per-test database and
the in-memory fakes from the shared conftest.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from dubsync.api.deps import get_services
from dubsync.main import app
from dubsync.workers import tasks


# =============================================================================
# FastAPI Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def client(services) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to the test services."""
    app.dependency_overrides[get_services] = lambda: services

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Celery Task Fixtures
# =============================================================================


@pytest.fixture
def worker_services(services, monkeypatch):
    """Make the Celery tasks use the test services."""
    monkeypatch.setattr(tasks, "get_services", lambda: services)
    return services
