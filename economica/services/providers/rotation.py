"""Provider selection and metered calls."""

import asyncio
import time
from collections import defaultdict
from typing import Collection, Dict, List, Optional

from economica.core.config import Settings
from economica.core.errors import ErrorKind, categorize_error
from economica.core.logging import get_logger
from economica.models.provider import ProviderCallResult, ProviderStatus
from economica.models.query import ConfidenceLevel, PremiumResponse, Query, QueryType
from economica.services.performance_monitor import PerformanceMonitor
from economica.services.providers.client import ProviderClient
from economica.services.providers.usage_tracker import UsageTracker

logger = get_logger(__name__)

STRATEGIES = ("preference", "cost_optimized", "least_used", "best_performance", "round_robin")


class ProviderRotationManager:
    """Chooses a provider for each premium call and performs the call.

    The candidate order is the query type's preferred list, then the
    configured default, then every other provider by descending
    priority. A candidate qualifies when it is enabled, not cooling
    down, and not blocked on any usage window.
    """

    def __init__(
        self,
        settings: Settings,
        tracker: UsageTracker,
        client: ProviderClient,
        monitor: Optional[PerformanceMonitor] = None,
        strategy: Optional[str] = None,
    ):
        self.settings = settings
        self.tracker = tracker
        self.client = client
        self.monitor = monitor
        self.strategy = strategy or settings.rotation_strategy
        if self.strategy not in STRATEGIES:
            logger.warning(f"Unknown rotation strategy '{self.strategy}', using preference")
            self.strategy = "preference"
        self._round_robin: Dict[str, int] = defaultdict(int)

    def candidates(self, query_type: QueryType) -> List[str]:
        """Every known provider, in fallback order for ``query_type``."""
        ordered: List[str] = []
        type_settings = self.settings.query_type_settings(query_type.value)
        for name in type_settings.preferred_providers:
            if name in self.settings.providers and name not in ordered:
                ordered.append(name)

        default = self.settings.default_provider
        if default and default in self.settings.providers and default not in ordered:
            ordered.append(default)

        rest = sorted(
            (name for name in self.settings.providers if name not in ordered),
            key=lambda name: -self.settings.providers[name].priority,
        )
        return ordered + rest

    async def select_provider(self, query_type: QueryType, exclude: Collection[str] = ()) -> Optional[str]:
        """Pick a qualifying provider, or None when none qualifies."""
        qualifying = [
            name for name in self.candidates(query_type)
            if name not in exclude and await self.tracker.is_available(name)
        ]
        if not qualifying:
            logger.warning(f"No provider available for {query_type.value} query")
            return None

        if self.strategy == "preference":
            return qualifying[0]

        preferred = set(self.settings.query_type_settings(query_type.value).preferred_providers)
        pool = [name for name in qualifying if name in preferred] or qualifying
        return self._apply_strategy(pool, query_type)

    def _apply_strategy(self, pool: List[str], query_type: QueryType) -> str:
        accounts = {name: self.tracker.get_account(name) for name in pool}

        if self.strategy == "cost_optimized":
            return min(pool, key=lambda name: accounts[name].cost_per_query)
        if self.strategy == "least_used":
            return min(pool, key=lambda name: accounts[name].usage_percent)
        if self.strategy == "best_performance":
            def performance(name: str) -> float:
                account = accounts[name]
                # Faster responses and higher success rates both win
                return account.success_rate - account.avg_response_time / 1000.0
            return max(pool, key=performance)

        index = self._round_robin[query_type.value] % len(pool)
        self._round_robin[query_type.value] += 1
        return pool[index]

    def timeout_for(self, provider: str, query_type: QueryType) -> float:
        """Tighter of the provider's own timeout and the type's response time cap."""
        provider_timeout = self.settings.providers[provider].timeout_seconds
        return min(provider_timeout, self.settings.query_type_settings(query_type.value).max_response_time)

    async def call(self, provider: str, query: Query) -> ProviderCallResult:
        """Perform one metered call; failures come back as values."""
        config = self.settings.providers.get(provider)
        if config is None:
            return ProviderCallResult.error(
                ErrorKind.NO_PROVIDER_AVAILABLE, f"Unknown provider {provider}", provider
            )

        if not await self.tracker.acquire(provider):
            status = await self.tracker.status(provider)
            kind = ErrorKind.LIMIT_EXCEEDED if status == ProviderStatus.BLOCKED else ErrorKind.NO_PROVIDER_AVAILABLE
            return ProviderCallResult.error(kind, f"Provider {provider} is {status.value}", provider)

        timeout = self.timeout_for(provider, query.type)
        start_time = time.perf_counter()
        try:
            reply = await asyncio.wait_for(self.client.complete(provider, query), timeout=timeout)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            kind = categorize_error(e)
            message = str(e) or f"{type(e).__name__} after {timeout:.1f}s"
            await self._record_failure(provider, duration_ms, message)
            return ProviderCallResult.error(kind, message, provider)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not isinstance(reply.content, str) or not reply.content.strip():
            await self._record_failure(provider, duration_ms, "empty response")
            return ProviderCallResult.error(
                ErrorKind.NO_SUITABLE_RESPONSE, f"Provider {provider} returned an empty answer", provider
            )

        cost = reply.cost if reply.cost is not None else config.cost_per_query
        await self.tracker.record_usage(
            provider,
            tokens_used=reply.tokens_used,
            cost=cost,
            success=True,
            response_time_ms=duration_ms,
        )
        if self.monitor:
            self.monitor.record_provider_call(provider, duration_ms, cost, True, tokens=reply.tokens_used)

        confidence = (
            ConfidenceLevel.from_score(reply.confidence_score)
            if reply.confidence_score is not None
            else ConfidenceLevel.HIGH
        )
        response = PremiumResponse(
            query_id=query.id,
            content=reply.content,
            confidence=confidence,
            citations=reply.citations,
            processing_time=duration_ms / 1000,
            cost=cost,
            provider=provider,
            tokens_used=reply.tokens_used,
        )
        return ProviderCallResult.success(response)

    async def _record_failure(self, provider: str, duration_ms: float, message: str) -> None:
        await self.tracker.record_usage(provider, success=False, response_time_ms=duration_ms)
        if self.monitor:
            self.monitor.record_provider_call(provider, duration_ms, 0.0, False, error=message)

    async def get_status(self) -> List[dict]:
        """Snapshot of every provider with its derived status."""
        snapshot = []
        for name in self.tracker.providers:
            await self.tracker.status(name)
            account = self.tracker.get_account(name)
            snapshot.append({**account.to_dict(), "strategy": self.strategy})
        return snapshot
