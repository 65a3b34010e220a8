"""Provider status endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from economica.api.deps import get_rotation
from economica.services.providers import ProviderRotationManager

router = APIRouter(prefix="/providers")


@router.get("")
async def provider_status(rotation: ProviderRotationManager = Depends(get_rotation)) -> Dict[str, Any]:
    """Per-provider usage, limits and derived status."""
    return {
        "strategy": rotation.strategy,
        "providers": await rotation.get_status(),
        "usage": rotation.tracker.get_usage_metrics(),
    }
