"""Shared test fixtures for the query orchestration service."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

import economica.data
from economica.core.config import CacheSettings, KnowledgeSettings, Settings
from economica.models.provider import ProviderReply
from economica.models.query import Query
from economica.services.cache import MultiTierCache
from economica.services.cache.backends import MemoryStorageAdapter
from economica.services.knowledge import KnowledgeBaseService
from economica.services.orchestrator import QueryOrchestrator
from economica.services.performance_monitor import PerformanceMonitor
from economica.services.providers import ProviderClient, ProviderRotationManager, UsageTracker

SEED_PATH = Path(economica.data.__file__).parent / "knowledge_seed.json"

# 2026-03-10 14:30:00 UTC
START_TIME = datetime(2026, 3, 10, 14, 30, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Controllable wall clock. Call for epoch seconds, ``utc()`` for a datetime."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def utc(self) -> datetime:
        return datetime.fromtimestamp(self.now, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.now += seconds


Behaviour = Union[ProviderReply, Exception]


class FakeProviderClient(ProviderClient):
    """Scripted provider client that records every call.

    Providers without a scripted behaviour answer with a generic reply.
    """

    def __init__(self, behaviours: Optional[Dict[str, Behaviour]] = None, delay: float = 0.0):
        self.behaviours = behaviours or {}
        self.delay = delay
        self.calls: List[str] = []

    async def complete(self, provider: str, query: Query) -> ProviderReply:
        self.calls.append(provider)
        if self.delay:
            await asyncio.sleep(self.delay)
        behaviour = self.behaviours.get(provider)
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour is not None:
            return behaviour
        return ProviderReply(
            content=f"Answer from {provider} for: {query.text}",
            tokens_used=120,
            confidence_score=85,
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        cache=CacheSettings(
            l2_db_path=str(tmp_path / "l2.db"),
            l3_db_path=str(tmp_path / "l3.db"),
            cleanup_interval_seconds=0,
        ),
        knowledge=KnowledgeSettings(load_bundled_seed=False),
        log_format="text",
    )


@pytest.fixture
def monitor():
    return PerformanceMonitor()


@pytest.fixture
async def knowledge_base(settings, monitor):
    kb = KnowledgeBaseService(settings.knowledge, monitor=monitor)
    await kb.load_from_file(str(SEED_PATH))
    return kb


@pytest.fixture
def empty_knowledge_base(settings, monitor):
    return KnowledgeBaseService(settings.knowledge, monitor=monitor)


@pytest.fixture
def memory_cache(settings, monitor, clock):
    """Three in-memory tiers driven by the fake clock."""
    return MultiTierCache(
        MemoryStorageAdapter(name="l1"),
        MemoryStorageAdapter(name="l2"),
        MemoryStorageAdapter(name="l3"),
        config=settings.cache,
        query_types=settings.query_types,
        monitor=monitor,
        clock=clock,
    )


@pytest.fixture
def provider_client():
    return FakeProviderClient()


@pytest.fixture
def tracker(settings, monitor, clock):
    return UsageTracker.from_settings(settings, monitor=monitor, clock=clock.utc)


@pytest.fixture
def rotation(settings, tracker, provider_client, monitor):
    return ProviderRotationManager(settings, tracker, provider_client, monitor=monitor)


@pytest.fixture
def orchestrator(settings, knowledge_base, memory_cache, rotation, monitor):
    return QueryOrchestrator(settings, knowledge_base, memory_cache, rotation, monitor=monitor)


@pytest.fixture
def cold_orchestrator(settings, empty_knowledge_base, memory_cache, rotation, monitor):
    """Orchestrator whose knowledge base is empty, so queries reach the cache and providers."""
    return QueryOrchestrator(settings, empty_knowledge_base, memory_cache, rotation, monitor=monitor)
