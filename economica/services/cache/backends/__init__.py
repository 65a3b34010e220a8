"""Cache storage adapters.

Provides the backing stores for the multi-tier cache:
- MemoryStorageAdapter: bounded in-process map (L1)
- SQLiteStorageAdapter: quota-limited persistent store (L2, default L3)
- RedisStorageAdapter: external durable store (L3 when configured)
"""

from economica.services.cache.backends.base import AdapterStats, StorageAdapter
from economica.services.cache.backends.memory_backend import MemoryStorageAdapter
from economica.services.cache.backends.redis_backend import RedisStorageAdapter
from economica.services.cache.backends.sqlite_backend import SQLiteStorageAdapter

__all__ = [
    "AdapterStats",
    "StorageAdapter",
    "MemoryStorageAdapter",
    "RedisStorageAdapter",
    "SQLiteStorageAdapter",
]
