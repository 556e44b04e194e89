"""
Unit tests for the catalog quota tracker and API key pool.
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest

from dubsync.core.config import Settings
from dubsync.core.exceptions import (
    NotFoundError,
    QuotaExceededError,
    UpstreamQuotaExceededError,
    ValidationError,
)
from dubsync.schemas.quota import ApiKeySpec
from dubsync.services.container import api_key_specs
from dubsync.services.quota_service import (
    ApiKeyPool,
    QuotaTracker,
    advance_boundary,
    next_midnight,
    reserve_and_call,
)

FIRST_BOUNDARY = datetime(2026, 10, 19, 7, 0, tzinfo=UTC)


@pytest.fixture
def tracker(session_factory, clock) -> QuotaTracker:
    return QuotaTracker(session_factory, key="youtube-data-api", daily_limit=10000, clock=clock)


class TestBoundaries:
    """Window boundary arithmetic."""

    def test_next_midnight_uses_pacific_time(self):
        """Midnight is taken in the quota timezone, not UTC."""
        now = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)
        assert next_midnight(now, "America/Los_Angeles") == FIRST_BOUNDARY

    def test_next_midnight_after_dst_ends(self):
        now = datetime(2026, 12, 1, 12, 0, tzinfo=UTC)
        assert next_midnight(now, "America/Los_Angeles") == datetime(2026, 12, 2, 8, 0, tzinfo=UTC)

    def test_boundary_not_reached(self):
        now = FIRST_BOUNDARY - timedelta(minutes=1)
        assert advance_boundary(FIRST_BOUNDARY, now, timedelta(hours=24)) == FIRST_BOUNDARY

    def test_boundary_exactly_reached(self):
        assert advance_boundary(FIRST_BOUNDARY, FIRST_BOUNDARY, timedelta(hours=24)) == (
            FIRST_BOUNDARY + timedelta(hours=24)
        )

    def test_missed_windows_collapse_into_one_jump(self):
        """Several missed windows land on the first boundary after now."""
        now = FIRST_BOUNDARY + timedelta(days=3, hours=12)
        assert advance_boundary(FIRST_BOUNDARY, now, timedelta(hours=24)) == (
            FIRST_BOUNDARY + timedelta(days=4)
        )


class TestReserve:
    """Reservations against the daily limit."""

    def test_first_reservation_creates_record(self, tracker):
        grant = tracker.reserve(100)

        assert grant.cost == 100
        assert grant.consumed == 100
        assert grant.limit == 10000
        assert grant.remaining == 9900
        assert grant.reset_at == FIRST_BOUNDARY

    def test_reservation_exceeding_limit_is_rejected(self, tracker):
        """9995 consumed, requesting 10 fails and leaves consumption unchanged."""
        tracker.reserve(9995)

        with pytest.raises(QuotaExceededError) as exc_info:
            tracker.reserve(10)

        error = exc_info.value
        assert error.requested == 10
        assert error.consumed == 9995
        assert error.limit == 10000
        assert error.reset_at == FIRST_BOUNDARY
        assert tracker.get_status().consumed == 9995

    def test_reservation_up_to_exact_limit(self, tracker):
        tracker.reserve(9995)
        grant = tracker.reserve(5)

        assert grant.consumed == 10000
        assert grant.remaining == 0

    def test_zero_cost_allowed_when_exhausted(self, tracker):
        tracker.reserve(10000)
        assert tracker.reserve(0).consumed == 10000

    def test_negative_cost_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.reserve(-1)

    def test_cost_above_limit_rejected(self, tracker):
        with pytest.raises(ValidationError):
            tracker.reserve(10001)

    def test_invalid_daily_limit(self, session_factory):
        with pytest.raises(ValidationError):
            QuotaTracker(session_factory, key="k", daily_limit=0)

    def test_concurrent_reservations_never_overshoot(self, tracker):
        """Two reservations of 6 against 10 remaining: exactly one wins."""
        tracker.reserve(9990)
        barrier = threading.Barrier(2)

        def attempt():
            barrier.wait()
            try:
                tracker.reserve(6)
                return True
            except QuotaExceededError:
                return False

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(lambda _: attempt(), range(2)))

        assert sorted(outcomes) == [False, True]
        assert tracker.get_status().consumed == 9996

    def test_many_concurrent_unit_reservations(self, tracker):
        tracker.reserve(9990)

        def attempt(_):
            try:
                tracker.reserve(1)
                return True
            except QuotaExceededError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(25)))

        assert outcomes.count(True) == 10
        assert tracker.get_status().consumed == 10000

    def test_trackers_share_persisted_state(self, tracker, session_factory, clock):
        """A second tracker on the same key sees the first one's consumption."""
        tracker.reserve(9000)
        other = QuotaTracker(session_factory, key="youtube-data-api", daily_limit=10000, clock=clock)

        with pytest.raises(QuotaExceededError):
            other.reserve(1001)
        assert other.reserve(1000).consumed == 10000


class TestRollover:
    """Lazy window rollover."""

    def test_rollover_on_first_call_after_boundary(self, tracker, clock):
        tracker.reserve(10000)
        clock.now = FIRST_BOUNDARY + timedelta(seconds=1)

        grant = tracker.reserve(100)

        assert grant.consumed == 100
        assert grant.reset_at == FIRST_BOUNDARY + timedelta(days=1)

    def test_no_rollover_before_boundary(self, tracker, clock):
        tracker.reserve(500)
        clock.now = FIRST_BOUNDARY - timedelta(seconds=1)

        assert tracker.get_status().consumed == 500

    def test_multiple_missed_windows(self, tracker, clock):
        """Several idle days roll over once, onto the next boundary after now."""
        tracker.reserve(700)
        clock.now = FIRST_BOUNDARY + timedelta(days=3, hours=12)

        status = tracker.get_status()

        assert status.consumed == 0
        assert status.reset_at == FIRST_BOUNDARY + timedelta(days=4)
        assert status.reset_at > clock()

    def test_limit_change_is_applied(self, tracker, session_factory, clock):
        tracker.reserve(8000)
        smaller = QuotaTracker(session_factory, key="youtube-data-api", daily_limit=5000, clock=clock)

        status = smaller.get_status()

        assert status.limit == 5000
        assert status.consumed == 5000
        assert status.remaining == 0


class TestOperatorActions:
    """Manual reset and upstream exhaustion."""

    def test_reset_window(self, tracker, clock):
        tracker.reserve(9000)

        status = tracker.reset_window()

        assert status.consumed == 0
        assert status.reset_at > clock()
        assert tracker.reserve(10000).consumed == 10000

    def test_mark_exhausted(self, tracker):
        tracker.reserve(10)

        status = tracker.mark_exhausted("quotaExceeded from upstream")

        assert status.consumed == status.limit
        assert status.remaining == 0
        with pytest.raises(QuotaExceededError):
            tracker.reserve(1)

    def test_status_before_any_reservation(self, tracker):
        status = tracker.get_status()

        assert status.key == "youtube-data-api"
        assert status.consumed == 0
        assert status.remaining == 10000
        assert status.reset_at == FIRST_BOUNDARY


def spec(key_id, limit=100, priority=0):
    return ApiKeySpec(key_id=key_id, api_key=f"{key_id}-secret", daily_limit=limit, priority=priority)


@pytest.fixture
def pool(session_factory, clock) -> ApiKeyPool:
    return ApiKeyPool(
        session_factory,
        [spec("backup", priority=1), spec("main", priority=0)],
        name="youtube-data-api",
        clock=clock,
    )


class TestApiKeyPool:
    """Rotation across several catalog API keys."""

    def test_keys_ordered_by_priority(self, pool):
        assert pool.key_ids == ["main", "backup"]

    def test_reserve_uses_first_key_with_budget(self, pool):
        grant = pool.reserve(60)
        assert grant.key == "main"
        assert grant.credential == "main-secret"

        grant = pool.reserve(60)
        assert grant.key == "backup"
        assert grant.credential == "backup-secret"

    def test_credential_not_serialized(self, pool):
        assert "credential" not in pool.reserve(1).model_dump()

    def test_all_keys_spent(self, pool):
        pool.reserve(100)
        pool.reserve(100)

        with pytest.raises(QuotaExceededError) as exc_info:
            pool.reserve(1)
        assert exc_info.value.key == "youtube-data-api"
        assert exc_info.value.consumed == 200
        assert exc_info.value.limit == 200

    def test_cost_above_every_limit_rejected(self, pool):
        with pytest.raises(ValidationError):
            pool.reserve(101)

    def test_mark_exhausted_moves_to_next_key(self, pool):
        pool.reserve(5)

        status = pool.mark_exhausted("quotaExceeded")

        assert status.active_key == "backup"
        assert pool.reserve(5).key == "backup"
        assert {s.key: s.remaining for s in status.keys} == {"main": 0, "backup": 100}

    def test_mark_exhausted_specific_key(self, pool):
        pool.mark_exhausted("quotaExceeded", key="backup")
        assert pool.reserve(100).key == "main"
        with pytest.raises(QuotaExceededError):
            pool.reserve(1)

    def test_status_totals(self, pool):
        pool.reserve(30)
        pool.reserve(80)

        status = pool.get_status()

        assert status.key == "youtube-data-api"
        assert status.consumed == 110
        assert status.limit == 200
        assert status.remaining == 90
        assert status.active_key == "main"
        assert [s.key for s in status.keys] == ["main", "backup"]

    def test_charge_uses_owning_key(self, pool):
        grant = pool.charge("backup-secret", 7)
        assert grant.key == "backup"
        assert pool.get_status().keys[1].consumed == 7

    def test_charge_unknown_credential_falls_back(self, pool):
        assert pool.charge("not-a-key", 7).key == "main"

    def test_reset_single_key(self, pool):
        pool.reserve(100)
        pool.reserve(50)

        status = pool.reset_window("main")

        assert {s.key: s.consumed for s in status.keys} == {"main": 0, "backup": 50}

    def test_reset_all_keys(self, pool):
        pool.reserve(100)
        pool.reserve(50)
        assert pool.reset_window().consumed == 0

    def test_unknown_key(self, pool):
        with pytest.raises(NotFoundError):
            pool.reset_window("nope")

    def test_rollover_is_per_key(self, pool, clock):
        pool.mark_exhausted("quotaExceeded", key="main")
        clock.now = FIRST_BOUNDARY
        assert pool.reserve(1).key == "main"

    @pytest.mark.parametrize("keys", [[], [spec("a"), spec("a")]])
    def test_invalid_key_list(self, session_factory, keys):
        with pytest.raises(ValidationError):
            ApiKeyPool(session_factory, keys)


class TestReserveAndCall:
    def test_upstream_quota_rotates_key(self, pool):
        calls = []

        async def call(credential):
            calls.append(credential)
            if credential == "main-secret":
                raise UpstreamQuotaExceededError("quotaExceeded")
            return "ok"

        assert asyncio.run(reserve_and_call(pool, 3, call)) == "ok"
        assert calls == ["main-secret", "backup-secret"]
        assert pool.get_status().active_key == "backup"

    def test_every_key_rejected(self, pool):
        async def call(credential):
            raise UpstreamQuotaExceededError("quotaExceeded")

        with pytest.raises(QuotaExceededError):
            asyncio.run(reserve_and_call(pool, 3, call))
        assert pool.get_status().remaining == 0


class TestConfiguredKeys:
    def test_primary_then_fallbacks(self):
        cfg = Settings(_env_file=None, youtube_api_key="k1", youtube_api_keys="k2, ,k3", quota_daily_limit=500)

        specs = api_key_specs(cfg)

        assert [s.key_id for s in specs] == ["youtube-data-api", "youtube-data-api-2", "youtube-data-api-3"]
        assert [s.api_key for s in specs] == ["k1", "k2", "k3"]
        assert {s.daily_limit for s in specs} == {500}

    def test_no_keys_configured(self):
        specs = api_key_specs(Settings(_env_file=None, youtube_api_key="", youtube_api_keys=""))
        assert [(s.key_id, s.api_key) for s in specs] == [("youtube-data-api", "")]
