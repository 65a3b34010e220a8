"""Metrics API endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from economica.api.deps import get_monitor, get_orchestrator
from economica.core.interfaces import IQueryOrchestrator
from economica.core.logging import get_logger
from economica.services.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)

router = APIRouter(prefix="/metrics")


@router.get("/summary")
async def metrics_summary(monitor: PerformanceMonitor = Depends(get_monitor)) -> dict:
    """Latencies, counters, gauges and recent alerts."""
    try:
        return monitor.get_metrics_summary()
    except Exception as exc:
        logger.error("Failed to build metrics summary", exc_info=exc)
        raise HTTPException(status_code=500, detail="Failed to build metrics summary")


@router.get("/economics")
async def metrics_economics(orchestrator: IQueryOrchestrator = Depends(get_orchestrator)) -> dict:
    """Answer sources, spend and savings."""
    return orchestrator.get_economics_metrics()
