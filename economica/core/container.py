"""Dependency injection container for service management.

One container is built per application in the FastAPI lifespan and
reached through ``request.app.state.container``. There is no
module-level instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from typing import Optional, TYPE_CHECKING

from economica.core.logging import get_logger

if TYPE_CHECKING:
    from economica.core.config import Settings
    from economica.core.interfaces import IKnowledgeBase, IQueryOrchestrator, IResponseCache
    from economica.services.cache.backends import StorageAdapter
    from economica.services.performance_monitor import PerformanceMonitor
    from economica.services.providers import ProviderClient, ProviderRotationManager, UsageTracker

logger = get_logger(__name__)

BUNDLED_SEED = "knowledge_seed.json"


class ServiceNotInitializedError(Exception):
    """Raised when accessing a service that hasn't been initialized."""

    def __init__(self, service_name: str):
        super().__init__(f"Service '{service_name}' has not been initialized. "
                         f"Call container.initialize() first.")
        self.service_name = service_name


@dataclass
class ServiceContainer:
    """Owns every service and its lifecycle.

    Usage:
        container = ServiceContainer()
        await container.initialize(settings)

        response = await container.orchestrator.resolve(query)

        await container.shutdown()

    A ``provider_client`` passed at construction replaces the HTTP client.
    """

    provider_client: Optional[ProviderClient] = field(default=None, repr=False)
    _monitor: Optional[PerformanceMonitor] = field(default=None, repr=False)
    _cache: Optional[IResponseCache] = field(default=None, repr=False)
    _knowledge_base: Optional[IKnowledgeBase] = field(default=None, repr=False)
    _usage_tracker: Optional[UsageTracker] = field(default=None, repr=False)
    _rotation: Optional[ProviderRotationManager] = field(default=None, repr=False)
    _orchestrator: Optional[IQueryOrchestrator] = field(default=None, repr=False)
    _owns_client: bool = field(default=False, repr=False)
    _initialized: bool = field(default=False, repr=True)
    _settings: Optional[Settings] = field(default=None, repr=False)

    async def initialize(self, settings: Settings, start_background_tasks: bool = True) -> None:
        """Initialize all services.

        Args:
            settings: Application settings.
            start_background_tasks: Start the periodic cache sweep.

        Raises:
            Exception: If any service fails to initialize.
        """
        if self._initialized:
            logger.warning("Container already initialized, skipping")
            return

        self._settings = settings
        logger.info("Initializing service container...")

        for problem in settings.validate_runtime():
            logger.warning(f"Configuration problem: {problem}")

        try:
            from economica.services.cache import MultiTierCache
            from economica.services.knowledge import KnowledgeBaseService
            from economica.services.orchestrator import QueryOrchestrator
            from economica.services.performance_monitor import PerformanceMonitor
            from economica.services.providers import (
                HttpProviderClient,
                ProviderRotationManager,
                UsageTracker,
            )

            self._monitor = PerformanceMonitor(
                slow_operation_threshold_ms=settings.slow_operation_threshold_ms,
                window_size=settings.metrics_window_size,
            )

            l1, l2, l3 = self._build_adapters(settings)
            self._cache = MultiTierCache(
                l1, l2, l3,
                config=settings.cache,
                query_types=settings.query_types,
                monitor=self._monitor,
            )
            await self._cache.start(background=start_background_tasks)
            logger.info("Response cache initialized")

            self._knowledge_base = KnowledgeBaseService(settings.knowledge, monitor=self._monitor)
            await self._load_knowledge(settings)
            logger.info(f"Knowledge base initialized with {len(self._knowledge_base)} entries")

            self._usage_tracker = UsageTracker.from_settings(settings, monitor=self._monitor)
            if self.provider_client is None:
                self.provider_client = HttpProviderClient(settings.providers, api_key=settings.provider_api_key)
                self._owns_client = True
            self._rotation = ProviderRotationManager(
                settings, self._usage_tracker, self.provider_client, monitor=self._monitor
            )
            logger.info(f"Provider rotation initialized ({self._rotation.strategy})")

            self._orchestrator = QueryOrchestrator(
                settings,
                self._knowledge_base,
                self._cache,
                self._rotation,
                monitor=self._monitor,
            )

            self._initialized = True
            logger.info("Service container initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize service container: {e}")
            await self.shutdown()
            raise

    @staticmethod
    def _build_adapters(settings: Settings) -> tuple[StorageAdapter, StorageAdapter, StorageAdapter]:
        from economica.services.cache.backends import (
            MemoryStorageAdapter,
            RedisStorageAdapter,
            SQLiteStorageAdapter,
        )

        cache = settings.cache
        l1 = MemoryStorageAdapter(max_bytes=cache.l1_quota_bytes, name="l1")
        l2 = SQLiteStorageAdapter(cache.l2_db_path, quota_bytes=cache.l2_quota_bytes, name="l2")
        if cache.l3_backend == "redis" and settings.redis_url:
            l3 = RedisStorageAdapter(settings.redis_url, prefix=cache.l3_key_prefix, name="l3")
        else:
            l3 = SQLiteStorageAdapter(cache.l3_db_path, quota_bytes=cache.l3_quota_bytes, name="l3")
        return l1, l2, l3

    async def _load_knowledge(self, settings: Settings) -> None:
        if settings.knowledge.seed_path:
            await self._knowledge_base.load_from_file(settings.knowledge.seed_path)
        elif settings.knowledge.load_bundled_seed:
            seed = resources.files("economica.data").joinpath(BUNDLED_SEED)
            with resources.as_file(seed) as path:
                await self._knowledge_base.load_from_file(str(path))

    async def shutdown(self) -> None:
        """Shutdown all services and cleanup resources."""
        logger.info("Shutting down service container...")

        if self._cache:
            try:
                await self._cache.stop()
                logger.info("Response cache stopped")
            except Exception as e:
                logger.error(f"Error stopping cache: {e}")

        if self.provider_client and self._owns_client:
            try:
                await self.provider_client.close()
            except Exception as e:
                logger.error(f"Error closing provider client: {e}")

        self._initialized = False
        logger.info("Service container shut down")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            raise ServiceNotInitializedError("settings")
        return self._settings

    @property
    def monitor(self) -> PerformanceMonitor:
        if self._monitor is None:
            raise ServiceNotInitializedError("monitor")
        return self._monitor

    @property
    def cache(self) -> IResponseCache:
        if self._cache is None:
            raise ServiceNotInitializedError("cache")
        return self._cache

    @property
    def knowledge_base(self) -> IKnowledgeBase:
        if self._knowledge_base is None:
            raise ServiceNotInitializedError("knowledge_base")
        return self._knowledge_base

    @property
    def usage_tracker(self) -> UsageTracker:
        if self._usage_tracker is None:
            raise ServiceNotInitializedError("usage_tracker")
        return self._usage_tracker

    @property
    def rotation(self) -> ProviderRotationManager:
        if self._rotation is None:
            raise ServiceNotInitializedError("rotation")
        return self._rotation

    @property
    def orchestrator(self) -> IQueryOrchestrator:
        if self._orchestrator is None:
            raise ServiceNotInitializedError("orchestrator")
        return self._orchestrator
