"""Premium provider accounting, selection and clients."""

from economica.services.providers.client import HttpProviderClient, ProviderClient
from economica.services.providers.rotation import ProviderRotationManager
from economica.services.providers.usage_tracker import UsageTracker

__all__ = [
    "HttpProviderClient",
    "ProviderClient",
    "ProviderRotationManager",
    "UsageTracker",
]
