"""Multi-tier response cache.

Usage:
    from economica.services.cache import MultiTierCache, QueryKeyGenerator

    cache = MultiTierCache(l1, l2, l3, settings.cache, settings.query_types)
    await cache.start()

    key = QueryKeyGenerator.for_query(query)
    payload = await cache.get(key, query.type)
"""

from economica.services.cache.key_generator import QueryKeyGenerator
from economica.services.cache.multi_tier_cache import (
    CacheEntry,
    CacheHealth,
    CacheTier,
    HealthVerdict,
    MultiTierCache,
    MultiTierCacheStats,
)

__all__ = [
    "CacheEntry",
    "CacheHealth",
    "CacheTier",
    "HealthVerdict",
    "MultiTierCache",
    "MultiTierCacheStats",
    "QueryKeyGenerator",
]
