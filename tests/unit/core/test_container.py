"""Tests for the ServiceContainer."""

import pytest

from economica.core.config import KnowledgeSettings
from economica.core.container import ServiceContainer, ServiceNotInitializedError
from economica.core.interfaces import IKnowledgeBase, IQueryOrchestrator, IResponseCache
from economica.models.query import KnowledgeResponse, Query, QueryType
from economica.services.cache import CacheTier
from economica.services.cache.backends import SQLiteStorageAdapter
from economica.services.providers import HttpProviderClient

from conftest import FakeProviderClient, SEED_PATH


class TestServiceContainer:
    """Initialization and shutdown."""

    def test_services_unavailable_before_initialize(self):
        container = ServiceContainer()

        assert not container.is_initialized
        with pytest.raises(ServiceNotInitializedError) as exc_info:
            container.orchestrator
        assert exc_info.value.service_name == "orchestrator"

    @pytest.mark.asyncio
    async def test_initialize_wires_services(self, settings):
        client = FakeProviderClient()
        container = ServiceContainer(provider_client=client)

        await container.initialize(settings, start_background_tasks=False)
        try:
            assert container.is_initialized
            assert isinstance(container.cache, IResponseCache)
            assert isinstance(container.knowledge_base, IKnowledgeBase)
            assert isinstance(container.orchestrator, IQueryOrchestrator)
            assert container.rotation.client is client
            assert isinstance(container.cache.adapter(CacheTier.L3), SQLiteStorageAdapter)
            assert len(container.knowledge_base) == 0
        finally:
            await container.shutdown()

        assert not container.is_initialized

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, settings):
        container = ServiceContainer(provider_client=FakeProviderClient())
        await container.initialize(settings, start_background_tasks=False)
        orchestrator = container.orchestrator

        await container.initialize(settings, start_background_tasks=False)

        assert container.orchestrator is orchestrator
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_seed_file_is_loaded(self, settings):
        settings.knowledge = KnowledgeSettings(seed_path=str(SEED_PATH))
        container = ServiceContainer(provider_client=FakeProviderClient())
        await container.initialize(settings, start_background_tasks=False)

        response = await container.orchestrator.resolve(Query(text="protocolo LCA", type=QueryType.PROTOCOL))

        assert isinstance(response, KnowledgeResponse)
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_bundled_seed_loads_by_default(self, settings):
        settings.knowledge = KnowledgeSettings()
        container = ServiceContainer(provider_client=FakeProviderClient())
        await container.initialize(settings, start_background_tasks=False)

        assert len(container.knowledge_base) == 4
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_default_client_is_http_and_closed_on_shutdown(self, settings):
        container = ServiceContainer()
        await container.initialize(settings, start_background_tasks=False)

        assert isinstance(container.provider_client, HttpProviderClient)
        await container.shutdown()

    @pytest.mark.asyncio
    async def test_failed_initialize_raises(self, settings):
        settings.knowledge = KnowledgeSettings(seed_path="/nonexistent/seed.json")
        container = ServiceContainer(provider_client=FakeProviderClient())

        with pytest.raises(FileNotFoundError):
            await container.initialize(settings, start_background_tasks=False)

        assert not container.is_initialized
