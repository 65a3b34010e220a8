"""Tests for provider usage accounting."""

from datetime import datetime, timezone

import pytest

from economica.core.config import ProviderSettings
from economica.models.provider import ProviderStatus, UsageWindow
from economica.services.providers import UsageTracker
from economica.services.providers.usage_tracker import next_boundary

HOUR = 3600


def _tracker(clock, monitor=None, hourly_limit=5, daily_limit=10, **kwargs):
    providers = {
        "alpha": ProviderSettings(
            display_name="Alpha", cost_per_query=0.002,
            hourly_limit=hourly_limit, daily_limit=daily_limit, monthly_limit=1000,
        ),
        "off": ProviderSettings(display_name="Off", enabled=False),
    }
    return UsageTracker(providers, monitor=monitor, clock=clock.utc, **kwargs)


class TestWindows:
    """Fixed window boundaries."""

    def test_next_boundaries(self):
        now = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc)

        assert next_boundary(UsageWindow.HOURLY, now) == datetime(2026, 3, 10, 15, tzinfo=timezone.utc)
        assert next_boundary(UsageWindow.DAILY, now) == datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert next_boundary(UsageWindow.MONTHLY, now) == datetime(2026, 4, 1, tzinfo=timezone.utc)

    def test_monthly_boundary_rolls_year(self):
        now = datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)
        assert next_boundary(UsageWindow.MONTHLY, now) == datetime(2027, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_hourly_counter_resets_at_the_top_of_the_hour(self, clock):
        tracker = _tracker(clock)
        for _ in range(5):
            assert await tracker.acquire("alpha")
        assert not await tracker.acquire("alpha")

        # 14:30 -> 15:00, not a sliding hour
        clock.advance(30 * 60)

        assert await tracker.acquire("alpha")
        account = tracker.get_account("alpha")
        assert account.windows[UsageWindow.HOURLY].used == 1
        assert account.windows[UsageWindow.DAILY].used == 6

    @pytest.mark.asyncio
    async def test_daily_counter_resets_at_midnight(self, clock):
        tracker = _tracker(clock, hourly_limit=100, daily_limit=3)
        for _ in range(3):
            await tracker.acquire("alpha")
        assert await tracker.status("alpha") == ProviderStatus.BLOCKED

        clock.advance(9 * HOUR + 30 * 60)

        assert await tracker.status("alpha") == ProviderStatus.AVAILABLE
        assert tracker.get_account("alpha").windows[UsageWindow.MONTHLY].used == 3

    @pytest.mark.asyncio
    async def test_reset_window(self, clock):
        tracker = _tracker(clock)
        for _ in range(5):
            await tracker.acquire("alpha")

        await tracker.reset_window(UsageWindow.HOURLY, "alpha")

        assert await tracker.is_available("alpha")
        assert tracker.get_account("alpha").windows[UsageWindow.DAILY].used == 5


class TestAcquire:
    """Counting calls against limits."""

    @pytest.mark.asyncio
    async def test_acquire_counts_every_window(self, clock):
        tracker = _tracker(clock)

        assert await tracker.acquire("alpha")

        account = tracker.get_account("alpha")
        assert [w.used for w in account.windows.values()] == [1, 1, 1]
        assert account.total_calls == 1
        assert account.last_used == clock.utc()

    @pytest.mark.asyncio
    async def test_blocked_provider_is_not_counted(self, clock):
        tracker = _tracker(clock)
        for _ in range(5):
            await tracker.acquire("alpha")

        assert not await tracker.acquire("alpha")
        assert tracker.get_account("alpha").total_calls == 5
        assert not await tracker.is_available("alpha")

    @pytest.mark.asyncio
    async def test_warning_status_still_available(self, clock):
        tracker = _tracker(clock, hourly_limit=20, daily_limit=1000)
        for _ in range(17):
            await tracker.acquire("alpha")

        assert await tracker.status("alpha") == ProviderStatus.WARNING
        assert await tracker.is_available("alpha")

    @pytest.mark.asyncio
    async def test_disabled_and_unknown_providers(self, clock):
        tracker = _tracker(clock)

        assert await tracker.status("off") == ProviderStatus.DISABLED
        assert not await tracker.acquire("off")
        assert not await tracker.acquire("ghost")
        assert await tracker.available_providers() == ["alpha"]


class TestOutcomes:
    """Recording call outcomes."""

    @pytest.mark.asyncio
    async def test_success_records_default_cost_and_tokens(self, clock):
        tracker = _tracker(clock)
        await tracker.acquire("alpha")

        await tracker.record_usage("alpha", tokens_used=150, response_time_ms=100)

        account = tracker.get_account("alpha")
        assert account.tokens_used == 150
        assert account.total_cost == pytest.approx(0.002)
        assert account.avg_response_time == 100

    @pytest.mark.asyncio
    async def test_moving_averages(self, clock):
        tracker = _tracker(clock)

        await tracker.record_usage("alpha", success=False, response_time_ms=100)
        await tracker.record_usage("alpha", success=True, response_time_ms=200)

        account = tracker.get_account("alpha")
        assert account.success_rate == pytest.approx(0.9 * 90 + 0.1 * 100)
        assert account.avg_response_time == pytest.approx(120)
        assert account.total_cost == pytest.approx(0.002)

    @pytest.mark.asyncio
    async def test_cooldown_after_consecutive_failures(self, clock):
        tracker = _tracker(clock, max_consecutive_failures=3, cooldown_seconds=600)
        for _ in range(3):
            await tracker.record_usage("alpha", success=False)

        assert not await tracker.is_available("alpha")
        assert not await tracker.acquire("alpha")

        clock.advance(601)
        assert await tracker.is_available("alpha")

    @pytest.mark.asyncio
    async def test_success_resets_failure_streak(self, clock):
        tracker = _tracker(clock, max_consecutive_failures=3)
        await tracker.record_usage("alpha", success=False)
        await tracker.record_usage("alpha", success=False)
        await tracker.record_usage("alpha", success=True)
        await tracker.record_usage("alpha", success=False)

        account = tracker.get_account("alpha")
        assert account.consecutive_failures == 1
        assert await tracker.is_available("alpha")

    @pytest.mark.asyncio
    async def test_unknown_provider_usage_is_ignored(self, clock):
        tracker = _tracker(clock)
        await tracker.record_usage("ghost", tokens_used=10)
        assert tracker.get_usage_metrics()["total_tokens"] == 0


class TestAlerts:
    """Threshold alerts."""

    @pytest.mark.asyncio
    async def test_each_level_fires_once_per_window(self, clock, monitor):
        tracker = _tracker(clock, monitor=monitor, hourly_limit=20, daily_limit=1000)
        for _ in range(20):
            await tracker.acquire("alpha")

        kinds = [alert.kind for alert in monitor.alerts]
        assert kinds == ["limit_approaching", "limit_critical", "limit_exceeded"]
        assert monitor.alerts[-1].details["window"] == "hourly"

    @pytest.mark.asyncio
    async def test_alerts_rearm_after_rollover(self, clock, monitor):
        tracker = _tracker(clock, monitor=monitor, hourly_limit=5, daily_limit=1000)
        for _ in range(4):
            await tracker.acquire("alpha")
        clock.advance(HOUR)
        for _ in range(4):
            await tracker.acquire("alpha")

        assert [alert.kind for alert in monitor.alerts] == ["limit_approaching", "limit_approaching"]


class TestReporting:

    @pytest.mark.asyncio
    async def test_usage_metrics(self, tracker):
        await tracker.acquire("gemini_pro")
        await tracker.record_usage("gemini_pro", tokens_used=200)

        metrics = tracker.get_usage_metrics()

        assert metrics["total_calls"] == 1
        assert metrics["total_tokens"] == 200
        assert metrics["providers"]["gemini_pro"]["windows"]["hourly"]["used"] == 1
        assert "mars_ai_pro" not in metrics["available"]
