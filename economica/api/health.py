"""Health endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from economica.api.deps import get_cache, get_orchestrator
from economica.core.interfaces import IQueryOrchestrator, IResponseCache

router = APIRouter(prefix="/health")


@router.get("")
async def system_health(orchestrator: IQueryOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    """Load, cache and provider health rolled into one verdict."""
    return orchestrator.system_health()


@router.get("/cache")
async def cache_health(cache: IResponseCache = Depends(get_cache)) -> Dict[str, Any]:
    return {
        "health": cache.health().to_dict(),
        "stats": cache.get_stats(),
    }
