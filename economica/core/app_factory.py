"""Application factory."""
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from economica.api import health, knowledge, metrics, providers, query
from economica.core.config import Settings, get_settings
from economica.core.container import ServiceContainer
from economica.core.errors import EconomicaError, EntryNotFoundError, KnowledgeValidationError
from economica.core.lifecycle import lifespan
from economica.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to run with; defaults to ``get_settings()``.
        container: Pre-built container, mainly for tests.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )
    app.state.settings = settings
    if container is not None:
        app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def time_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
        if elapsed_ms > settings.slow_request_ms:
            logger.warning("Slow request %s %s took %.0fms", request.method, request.url.path, elapsed_ms)
        return response

    @app.exception_handler(KnowledgeValidationError)
    async def knowledge_validation_handler(request: Request, exc: KnowledgeValidationError):
        logger.warning(f"Rejected knowledge entry: {exc.message}")
        return JSONResponse(status_code=422, content=exc.to_dict())

    @app.exception_handler(EntryNotFoundError)
    async def entry_not_found_handler(request: Request, exc: EntryNotFoundError):
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(EconomicaError)
    async def economica_error_handler(request: Request, exc: EconomicaError):
        logger.error(f"Service error: {exc.message}")
        status_code = 503 if exc.recoverable else 500
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"category": "internal", "message": "Query service failed unexpectedly"},
        )

    app.include_router(query.router, prefix=settings.api_prefix, tags=["query"])
    app.include_router(knowledge.router, prefix=settings.api_prefix, tags=["knowledge"])
    app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
    app.include_router(providers.router, prefix=settings.api_prefix, tags=["providers"])
    app.include_router(metrics.router, prefix=settings.api_prefix, tags=["metrics"])

    @app.get("/")
    async def root() -> Dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "query_endpoint": f"{settings.api_prefix}/query",
            "enabled_providers": sorted(name for name, p in settings.providers.items() if p.enabled),
        }

    return app
