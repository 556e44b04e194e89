"""
Pytest configuration and fixtures for unit tests.
"""

import pytest

from dubsync.services.container import build_services


@pytest.fixture
def build(session_factory, catalog, submission, mailbox, share_pages, test_settings, clock):
    """Build services with some settings overridden."""

    def _build(api_keys=None, **overrides):
        return build_services(
            session_factory=session_factory,
            catalog=catalog,
            submission=submission,
            mailbox=mailbox,
            share_resolver=share_pages,
            api_keys=api_keys,
            config=test_settings.model_copy(update=overrides),
            clock=clock,
        )

    return _build
