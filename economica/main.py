"""Main FastAPI application for the query orchestration service."""

from economica.core.app_factory import create_app
from economica.core.config import get_settings

settings = get_settings()
app = create_app(settings)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "economica.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
