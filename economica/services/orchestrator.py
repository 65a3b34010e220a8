"""Query orchestration: knowledge base, cache, premium providers, fallback."""

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from economica.core.config import Settings
from economica.core.errors import ErrorKind
from economica.core.logging import get_logger
from economica.models.knowledge import Pagination, SearchFilters, SearchQuery, SearchSorting
from economica.models.provider import HealthStatus, ProviderCallResult
from economica.models.query import (
    CacheResponse,
    Citation,
    CombinedResponse,
    ConfidenceLevel,
    FallbackResponse,
    KnowledgeResponse,
    PremiumResponse,
    Query,
    QueryType,
    ResponseSource,
)
from economica.services.cache import HealthVerdict, MultiTierCache, QueryKeyGenerator
from economica.services.knowledge import KnowledgeBaseService
from economica.services.performance_monitor import PerformanceMonitor
from economica.services.providers import ProviderRotationManager
from economica.services.single_flight import SingleFlight

logger = get_logger(__name__)

AnyResponse = Union[KnowledgeResponse, CacheResponse, PremiumResponse, CombinedResponse, FallbackResponse]

MAX_COMBINED_CITATIONS = 5
ACTIVE_QUERIES_DEGRADED = 50
ACTIVE_QUERIES_CRITICAL = 100

EMERGENCY_FALLBACK = (
    "We could not produce an automated answer for this emergency. "
    "Seek immediate medical attention: contact your local emergency services "
    "or go to the nearest emergency department now."
)
GENERAL_FALLBACK = (
    "We could not find a reliable answer for this question right now. "
    "Please try again in a few minutes, or rephrase the question with more "
    "specific terms (for example the condition, body region or procedure)."
)


def response_quality_score(response: AnyResponse) -> float:
    """Heuristic 0-100 quality score from answer length and citations."""
    score = 70.0
    if len(response.content) > 100:
        score += 10
    if len(response.content) > 500:
        score += 10
    if response.citations:
        score += 15
    return min(score, 100.0)


@dataclass
class EconomicsMetrics:
    """Running totals of where answers came from and what they cost."""
    total_queries: int = 0
    by_source: Counter = field(default_factory=Counter)
    total_cost: float = 0.0
    cost_savings: float = 0.0
    total_response_time: float = 0.0
    shared_results: int = 0

    @property
    def avg_response_time(self) -> float:
        return self.total_response_time / self.total_queries if self.total_queries else 0.0

    def source_rate(self, source: ResponseSource) -> float:
        return self.by_source[source.value] / self.total_queries if self.total_queries else 0.0


class QueryOrchestrator:
    """Resolves queries through the cheapest source that can answer them.

    Order: knowledge base, cache, premium provider (with one failover),
    relaxed knowledge base, fixed fallback. ``resolve`` never raises.
    Concurrent identical queries share one resolution.
    """

    def __init__(
        self,
        settings: Settings,
        knowledge_base: KnowledgeBaseService,
        cache: MultiTierCache,
        rotation: ProviderRotationManager,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self.settings = settings
        self.knowledge_base = knowledge_base
        self.cache = cache
        self.rotation = rotation
        self.monitor = monitor or PerformanceMonitor()
        self._flight: SingleFlight[AnyResponse] = SingleFlight()
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_queries)
        self._active_queries = 0
        self._economics = EconomicsMetrics()

    @property
    def active_queries(self) -> int:
        return self._active_queries

    @property
    def in_flight(self) -> int:
        return self._flight.in_flight

    # =========================================================================
    # Entry points
    # =========================================================================

    async def resolve(self, query: Query) -> AnyResponse:
        """Answer ``query`` from the cheapest adequate source."""
        key = QueryKeyGenerator.query_key(query)
        response, shared = await self._flight.do(key, lambda: self._resolve_bounded(query, self._pipeline))
        if shared:
            self._economics.shared_results += 1
            self.monitor.increment_counter("queries_deduplicated")
            logger.debug(f"Query {query.id} joined in-flight resolution {response.query_id}")
        return response

    async def resolve_combined(self, query: Query) -> AnyResponse:
        """Answer from both the knowledge base and a premium provider, merged.

        Falls back to whichever source answered when only one did.
        """
        key = f"combined:{QueryKeyGenerator.query_key(query)}"
        response, _ = await self._flight.do(key, lambda: self._resolve_bounded(query, self._combined_pipeline))
        return response

    async def _resolve_bounded(self, query: Query, pipeline) -> AnyResponse:
        async with self._semaphore:
            self._active_queries += 1
            start_time = time.perf_counter()
            try:
                response = await asyncio.wait_for(
                    pipeline(query, start_time),
                    timeout=self.settings.global_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error(
                    f"Query {query.id} exceeded {self.settings.global_timeout_seconds}s",
                    extra={"event": "query_timeout", "query_id": query.id},
                )
                response = self._fallback(query, start_time, reason="timeout")
            except Exception as e:
                logger.exception(
                    f"Unexpected error resolving query {query.id}: {e}",
                    extra={"event": "query_error", "query_id": query.id},
                )
                response = self._fallback(query, start_time, reason="internal_error")
            finally:
                self._active_queries -= 1

        self._record(response)
        return response

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def _pipeline(self, query: Query, start_time: float) -> AnyResponse:
        knowledge = await self._search_knowledge(query, start_time)
        if knowledge is not None:
            self.monitor.record_stage("knowledge_hit", query.id, entry_id=knowledge.entry_id)
            return knowledge

        cache_key = QueryKeyGenerator.for_query(query)
        async with self.monitor.measure_latency("cache_probe_latency"):
            cached = await self._probe_cache(cache_key, query, start_time)
        if cached is not None:
            self.monitor.record_stage("cache_hit", query.id)
            return cached

        result = await self._query_premium(query)
        if result.ok:
            response = result.response.model_copy(update={"processing_time": self._elapsed(start_time)})
            self.monitor.record_stage("premium_answer", query.id, provider=response.provider)
            await self._write_through(cache_key, query, response)
            return response

        failure = result.failure
        self.monitor.record_stage("premium_failed", query.id, error_kind=failure.kind.value)

        degraded = await self._search_knowledge(query, start_time, degraded=True)
        if degraded is not None:
            self.monitor.record_stage("knowledge_degraded", query.id, entry_id=degraded.entry_id)
            return degraded

        return self._fallback(query, start_time, reason=failure.kind.value)

    async def _combined_pipeline(self, query: Query, start_time: float) -> AnyResponse:
        knowledge_task = asyncio.ensure_future(self._search_knowledge(query, start_time))
        premium_task = asyncio.ensure_future(self._query_premium(query))
        knowledge, result = await asyncio.gather(knowledge_task, premium_task)

        premium = result.response if result.ok else None
        if knowledge is not None and premium is not None:
            return self._merge(query, knowledge, premium, start_time)
        if premium is not None:
            return premium.model_copy(update={"processing_time": self._elapsed(start_time)})
        if knowledge is not None:
            return knowledge
        return self._fallback(query, start_time, reason=result.failure.kind.value)

    def _merge(
        self,
        query: Query,
        knowledge: KnowledgeResponse,
        premium: PremiumResponse,
        start_time: float,
    ) -> CombinedResponse:
        citations: List[Citation] = []
        seen_titles = set()
        for citation in knowledge.citations + premium.citations:
            if citation.title in seen_titles:
                continue
            seen_titles.add(citation.title)
            citations.append(citation)

        avg_score = (
            knowledge.confidence.representative_score() + premium.confidence.representative_score()
        ) / 2
        return CombinedResponse(
            query_id=query.id,
            content=f"{knowledge.content}\n\n{premium.content}",
            confidence=ConfidenceLevel.from_score(avg_score),
            citations=citations[:MAX_COMBINED_CITATIONS],
            processing_time=self._elapsed(start_time),
            cost=knowledge.cost + premium.cost,
            sources=[ResponseSource.KNOWLEDGE, ResponseSource.PREMIUM],
            provider=premium.provider,
        )

    # =========================================================================
    # Stages
    # =========================================================================

    async def _search_knowledge(
        self,
        query: Query,
        start_time: float,
        degraded: bool = False,
    ) -> Optional[KnowledgeResponse]:
        config = self.settings.knowledge
        threshold = config.relaxed_confidence_threshold if degraded else config.confidence_threshold
        search = SearchQuery(
            text=query.text,
            type=query.type,
            filters=SearchFilters(min_confidence=threshold),
            sorting=SearchSorting(field="relevance", order="desc"),
            pagination=Pagination(page=1, limit=config.result_limit),
        )

        try:
            results = await self.knowledge_base.search(search)
        except Exception as e:
            logger.warning(f"Knowledge base search failed for query {query.id}: {e}")
            return None

        if not results.results:
            return None

        best = results.results[0]
        level = ConfidenceLevel.from_score(best.entry.confidence_score)
        if not degraded and (
            level == ConfidenceLevel.VERY_LOW or len(best.entry.content) <= config.min_content_length
        ):
            return None

        entry = await self.knowledge_base.get_entry(best.entry.id)
        if entry is None or not entry.content.strip():
            return None

        citation = Citation(
            id=entry.id,
            title=entry.title,
            source=", ".join(entry.sources) if entry.sources else "Internal knowledge base",
            relevance=round(best.relevance_score, 2),
            type="internal",
        )
        return KnowledgeResponse(
            query_id=query.id,
            content=entry.content,
            confidence=ConfidenceLevel.VERY_LOW if degraded else level,
            citations=[citation],
            processing_time=self._elapsed(start_time),
            entry_id=entry.id,
            degraded=degraded,
        )

    async def _probe_cache(self, cache_key: str, query: Query, start_time: float) -> Optional[CacheResponse]:
        payload = await self.cache.get(cache_key, query.type)
        if payload is None:
            return None

        try:
            return CacheResponse(
                query_id=query.id,
                content=payload["content"],
                confidence=payload["confidence"],
                citations=payload.get("citations") or [],
                provider=payload.get("provider"),
                processing_time=self._elapsed(start_time),
            )
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning(f"Discarding malformed cache payload for {cache_key}: {e}")
            await self.cache.remove(cache_key)
            return None

    async def _query_premium(self, query: Query) -> ProviderCallResult:
        provider = await self.rotation.select_provider(query.type)
        if provider is None:
            return ProviderCallResult.error(
                ErrorKind.NO_PROVIDER_AVAILABLE, f"No provider available for {query.type.value}"
            )

        result = await self.rotation.call(provider, query)
        if result.ok or not result.failure.retryable:
            return result

        alternative = await self.rotation.select_provider(query.type, exclude={provider})
        if alternative is None:
            logger.warning(f"No alternative to {provider} after {result.failure.kind.value}")
            return ProviderCallResult.error(
                ErrorKind.NO_SUITABLE_RESPONSE,
                f"{provider} failed ({result.failure.message}) and no alternative was available",
                provider,
            )

        logger.info(
            f"Retrying query {query.id} on {alternative} after {provider} failed",
            extra={"event": "provider_failover", "provider": alternative, "failed_provider": provider},
        )
        second = await self.rotation.call(alternative, query)
        if second.ok:
            return second
        return ProviderCallResult.error(
            ErrorKind.NO_SUITABLE_RESPONSE,
            f"{provider} and {alternative} both failed: {second.failure.message}",
            alternative,
        )

    async def _write_through(self, cache_key: str, query: Query, response: PremiumResponse) -> None:
        if query.type == QueryType.EMERGENCY or response.confidence == ConfidenceLevel.VERY_LOW:
            return
        await self.cache.set(cache_key, response.model_dump(mode="json"), query.type)

    def _fallback(self, query: Query, start_time: float, reason: Optional[str] = None) -> FallbackResponse:
        content = EMERGENCY_FALLBACK if query.type == QueryType.EMERGENCY else GENERAL_FALLBACK
        self.monitor.record_stage("fallback", query.id, reason=reason)
        return FallbackResponse(
            query_id=query.id,
            content=content,
            processing_time=self._elapsed(start_time),
            reason=reason,
        )

    @staticmethod
    def _elapsed(start_time: float) -> float:
        return time.perf_counter() - start_time

    # =========================================================================
    # Metrics
    # =========================================================================

    def _record(self, response: AnyResponse) -> None:
        economics = self._economics
        economics.total_queries += 1
        economics.by_source[response.source.value] += 1
        economics.total_cost += response.cost
        economics.total_response_time += response.processing_time
        if response.source in (ResponseSource.KNOWLEDGE, ResponseSource.CACHE):
            economics.cost_savings += self.settings.premium_reference_cost

        self.monitor.increment_counter(f"queries_{response.source.value}")
        self.monitor.record_latency("query_latency_ms", response.processing_time * 1000)
        self.monitor.record_value("response_quality", response_quality_score(response))

    def get_economics_metrics(self) -> Dict[str, Any]:
        """Where answers came from, what they cost and what was saved."""
        economics = self._economics
        return {
            "total_queries": economics.total_queries,
            "queries_by_source": dict(economics.by_source),
            "total_cost": round(economics.total_cost, 6),
            "cost_savings": round(economics.cost_savings, 6),
            "avg_response_time": round(economics.avg_response_time, 4),
            "knowledge_rate": round(economics.source_rate(ResponseSource.KNOWLEDGE), 4),
            "premium_rate": round(economics.source_rate(ResponseSource.PREMIUM), 4),
            "cache_hit_rate": round(self.cache.stats.hit_rate, 4),
            "shared_results": economics.shared_results,
        }

    def system_health(self) -> Dict[str, Any]:
        """Overall verdict from load, cache health and provider health."""
        cache_health = self.cache.health()
        providers = {
            name: self.rotation.tracker.get_account(name).health_status
            for name in self.rotation.tracker.providers
        }
        enabled = [
            name for name in providers
            if self.rotation.tracker.get_account(name).enabled
        ]
        healthy = [name for name in enabled if providers[name] == HealthStatus.HEALTHY]

        issues: List[str] = []
        status = "healthy"
        if self._active_queries > ACTIVE_QUERIES_CRITICAL:
            status = "critical"
            issues.append(f"{self._active_queries} active queries")
        elif self._active_queries > ACTIVE_QUERIES_DEGRADED:
            status = "degraded"
            issues.append(f"{self._active_queries} active queries")

        if cache_health.status == HealthVerdict.POOR:
            issues.append("Cache health is poor")
        if enabled and not healthy:
            issues.append("No healthy premium provider")
        if issues and status == "healthy":
            status = "degraded"

        return {
            "status": status,
            "issues": issues,
            "active_queries": self._active_queries,
            "in_flight": self._flight.in_flight,
            "cache": cache_health.to_dict(),
            "providers": {name: health.value for name, health in providers.items()},
        }
