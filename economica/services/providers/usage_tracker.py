"""Per-provider usage accounting against hourly, daily and monthly limits."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from economica.core.config import ProviderSettings, Settings
from economica.core.logging import get_logger
from economica.models.provider import (
    ProviderAccount,
    ProviderStatus,
    UsageWindow,
    WindowCounter,
)
from economica.services.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)

SUCCESS_RATE_ALPHA = 0.1
RESPONSE_TIME_ALPHA = 0.2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_boundary(window: UsageWindow, now: datetime) -> datetime:
    """Start of the next fixed window after ``now`` (UTC)."""
    if window == UsageWindow.HOURLY:
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    if window == UsageWindow.DAILY:
        return now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageTracker:
    """Owns every ProviderAccount.

    All mutations go through one ``asyncio.Lock``. Counters reset lazily
    when a fixed window boundary has passed, never on a sliding basis.
    """

    def __init__(
        self,
        providers: Dict[str, ProviderSettings],
        warning_threshold: float = 85.0,
        blocking_threshold: float = 100.0,
        alert_warning_threshold: float = 80.0,
        alert_critical_threshold: float = 95.0,
        max_consecutive_failures: int = 3,
        cooldown_seconds: int = 600,
        monitor: Optional[PerformanceMonitor] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.alert_warning_threshold = alert_warning_threshold
        self.alert_critical_threshold = alert_critical_threshold
        self.max_consecutive_failures = max_consecutive_failures
        self.cooldown = timedelta(seconds=cooldown_seconds)
        self.monitor = monitor
        self._clock = clock
        self._lock = asyncio.Lock()
        # (provider, window) -> highest alert level already raised in this window
        self._alert_levels: Dict[Tuple[str, UsageWindow], str] = {}

        now = clock()
        self._accounts: Dict[str, ProviderAccount] = {
            name: ProviderAccount(
                provider=name,
                display_name=config.display_name,
                enabled=config.enabled,
                priority=config.priority,
                cost_per_query=config.cost_per_query,
                windows={
                    UsageWindow.HOURLY: WindowCounter(config.hourly_limit, next_boundary(UsageWindow.HOURLY, now)),
                    UsageWindow.DAILY: WindowCounter(config.daily_limit, next_boundary(UsageWindow.DAILY, now)),
                    UsageWindow.MONTHLY: WindowCounter(config.monthly_limit, next_boundary(UsageWindow.MONTHLY, now)),
                },
                warning_threshold=warning_threshold,
                blocking_threshold=blocking_threshold,
            )
            for name, config in providers.items()
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        monitor: Optional[PerformanceMonitor] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "UsageTracker":
        return cls(
            settings.providers,
            warning_threshold=settings.warning_threshold,
            blocking_threshold=settings.blocking_threshold,
            alert_warning_threshold=settings.alert_warning_threshold,
            alert_critical_threshold=settings.alert_critical_threshold,
            max_consecutive_failures=settings.max_consecutive_failures,
            cooldown_seconds=settings.cooldown_seconds,
            monitor=monitor,
            clock=clock,
        )

    @property
    def providers(self) -> List[str]:
        return list(self._accounts)

    def get_account(self, provider: str) -> ProviderAccount:
        """Direct access to an account. Raises KeyError for unknown providers."""
        return self._accounts[provider]

    # =========================================================================
    # Status
    # =========================================================================

    async def status(self, provider: str) -> ProviderStatus:
        async with self._lock:
            account = self._accounts[provider]
            self._roll_windows(account, self._clock())
            return account.status

    async def is_available(self, provider: str) -> bool:
        """Enabled, not cooling down, and not blocked on any window."""
        async with self._lock:
            account = self._accounts.get(provider)
            if account is None:
                return False
            now = self._clock()
            self._roll_windows(account, now)
            return (
                account.status in (ProviderStatus.AVAILABLE, ProviderStatus.WARNING)
                and not account.is_cooling_down(now)
            )

    async def available_providers(self, candidates: Optional[Iterable[str]] = None) -> List[str]:
        names = list(candidates) if candidates is not None else self.providers
        return [name for name in names if await self.is_available(name)]

    # =========================================================================
    # Accounting
    # =========================================================================

    async def acquire(self, provider: str) -> bool:
        """Count one call against every window if the provider is not blocked.

        Returns:
            False when the provider is unknown, disabled, cooling down or at
            its limit; nothing is counted in that case.
        """
        async with self._lock:
            account = self._accounts.get(provider)
            if account is None:
                return False
            now = self._clock()
            self._roll_windows(account, now)
            if account.status not in (ProviderStatus.AVAILABLE, ProviderStatus.WARNING):
                return False
            if account.is_cooling_down(now):
                return False

            for window in account.windows.values():
                window.used += 1
            account.total_calls += 1
            account.last_used = now
            self._check_thresholds(account)
            return True

    async def record_usage(
        self,
        provider: str,
        tokens_used: int = 0,
        cost: Optional[float] = None,
        success: bool = True,
        response_time_ms: float = 0.0,
    ) -> None:
        """Record the outcome of a call previously counted by ``acquire``.

        Args:
            provider: Provider id.
            tokens_used: Tokens the call consumed.
            cost: Amount charged; defaults to the provider's cost per query on success.
            success: Whether the call produced an answer.
            response_time_ms: Wall time of the call.
        """
        async with self._lock:
            account = self._accounts.get(provider)
            if account is None:
                logger.warning(f"Usage recorded for unknown provider {provider}")
                return
            now = self._clock()
            self._roll_windows(account, now)

            if cost is None:
                cost = account.cost_per_query if success else 0.0
            account.tokens_used += tokens_used
            account.total_cost += cost

            outcome = 100.0 if success else 0.0
            account.success_rate = (1 - SUCCESS_RATE_ALPHA) * account.success_rate + SUCCESS_RATE_ALPHA * outcome
            if response_time_ms:
                if account.avg_response_time == 0:
                    account.avg_response_time = response_time_ms
                else:
                    account.avg_response_time = (
                        (1 - RESPONSE_TIME_ALPHA) * account.avg_response_time
                        + RESPONSE_TIME_ALPHA * response_time_ms
                    )

            if success:
                account.success_count += 1
                account.consecutive_failures = 0
                account.cooldown_until = None
            else:
                account.failure_count += 1
                account.consecutive_failures += 1
                if account.consecutive_failures >= self.max_consecutive_failures:
                    account.cooldown_until = now + self.cooldown
                    logger.warning(
                        f"Provider {provider} failed {account.consecutive_failures} times in a row, "
                        f"cooling down until {account.cooldown_until.isoformat()}",
                        extra={"event": "provider_cooldown", "provider": provider},
                    )

    async def reset_window(self, window: UsageWindow, provider: Optional[str] = None) -> None:
        """Zero a window's counters now, for one provider or all."""
        async with self._lock:
            now = self._clock()
            targets = [self._accounts[provider]] if provider else list(self._accounts.values())
            for account in targets:
                counter = account.windows[window]
                counter.used = 0
                counter.reset_at = next_boundary(window, now)
                self._alert_levels.pop((account.provider, window), None)
        logger.info(f"Reset {window.value} usage for {provider or 'all providers'}")

    def _roll_windows(self, account: ProviderAccount, now: datetime) -> None:
        for window, counter in account.windows.items():
            if now >= counter.reset_at:
                counter.used = 0
                counter.reset_at = next_boundary(window, now)
                self._alert_levels.pop((account.provider, window), None)

    def _check_thresholds(self, account: ProviderAccount) -> None:
        for window, counter in account.windows.items():
            usage = counter.usage_percent
            if usage >= account.blocking_threshold:
                level, kind, severity = "exceeded", "limit_exceeded", "critical"
            elif usage >= self.alert_critical_threshold:
                level, kind, severity = "critical", "limit_critical", "critical"
            elif usage >= self.alert_warning_threshold:
                level, kind, severity = "warning", "limit_approaching", "warning"
            else:
                continue

            key = (account.provider, window)
            if self._alert_levels.get(key) == level:
                continue
            self._alert_levels[key] = level

            message = (
                f"Provider {account.provider} at {usage:.0f}% of its {window.value} limit "
                f"({counter.used}/{counter.limit})"
            )
            if self.monitor:
                self.monitor.record_alert(
                    kind, message, severity=severity,
                    provider=account.provider, window=window.value, usage_percent=round(usage, 2),
                )
            else:
                logger.warning(message)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_usage_metrics(self) -> Dict[str, object]:
        accounts = list(self._accounts.values())
        return {
            "providers": {account.provider: account.to_dict() for account in accounts},
            "total_calls": sum(account.total_calls for account in accounts),
            "total_tokens": sum(account.tokens_used for account in accounts),
            "total_cost": round(sum(account.total_cost for account in accounts), 6),
            "available": [
                account.provider for account in accounts
                if account.status in (ProviderStatus.AVAILABLE, ProviderStatus.WARNING)
            ],
        }
