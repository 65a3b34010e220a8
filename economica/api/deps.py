from fastapi import Depends, Request

from economica.core.container import ServiceContainer
from economica.core.interfaces import IKnowledgeBase, IQueryOrchestrator, IResponseCache
from economica.services.performance_monitor import PerformanceMonitor
from economica.services.providers import ProviderRotationManager


def get_service_container(request: Request) -> ServiceContainer:
    """Get the service container placed on app state by the lifespan."""
    return request.app.state.container


def get_orchestrator(
    container: ServiceContainer = Depends(get_service_container)
) -> IQueryOrchestrator:
    return container.orchestrator


def get_knowledge_base(
    container: ServiceContainer = Depends(get_service_container)
) -> IKnowledgeBase:
    return container.knowledge_base


def get_cache(
    container: ServiceContainer = Depends(get_service_container)
) -> IResponseCache:
    return container.cache


def get_rotation(
    container: ServiceContainer = Depends(get_service_container)
) -> ProviderRotationManager:
    return container.rotation


def get_monitor(
    container: ServiceContainer = Depends(get_service_container)
) -> PerformanceMonitor:
    return container.monitor
