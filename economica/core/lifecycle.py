"""Lifecycle management for the application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from economica.core.container import ServiceContainer
from economica.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the container on startup and tear it down on shutdown.

    A container already placed on ``app.state`` is reused, and only
    initialized when it has not been yet.
    """
    logger.info("Starting query orchestration service...")

    container: ServiceContainer = getattr(app.state, "container", None) or ServiceContainer()
    try:
        if not container.is_initialized:
            await container.initialize(app.state.settings)
        app.state.container = container
        logger.info("Query orchestration service started successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    yield

    logger.info("Shutting down query orchestration service...")
    await container.shutdown()
    logger.info("Query orchestration service shut down")
