"""In-process storage adapter for the hot cache tier."""

from typing import Dict, List, Optional

from economica.core.errors import StorageQuotaExceededError
from economica.services.cache.backends.base import AdapterStats, StorageAdapter


class MemoryStorageAdapter(StorageAdapter):
    """Bounded in-process map.

    Enforces a byte quota on stored values. Entry-count limits are the
    cache's concern, not the adapter's.
    """

    def __init__(self, max_bytes: Optional[int] = None, name: str = "memory"):
        """Initialize memory adapter.

        Args:
            max_bytes: Byte quota across all values, or None for unbounded.
            name: Label used in logs and errors.
        """
        self.name = name
        self._storage: Dict[str, str] = {}
        self._sizes: Dict[str, int] = {}
        self._total_bytes = 0
        self._max_bytes = max_bytes
        self._stats = AdapterStats()

    @property
    def stats(self) -> AdapterStats:
        """Get adapter statistics."""
        return self._stats

    async def disconnect(self) -> None:
        """Drop everything held in memory."""
        await self.clear()

    async def get(self, key: str) -> Optional[str]:
        self._stats.record_read()
        return self._storage.get(key)

    async def set(self, key: str, value: str) -> None:
        size = len(value.encode("utf-8"))
        previous = self._sizes.get(key, 0)

        if self._max_bytes is not None:
            available = self._max_bytes - (self._total_bytes - previous)
            if size > available:
                self._stats.record_quota_rejection()
                raise StorageQuotaExceededError(self.name, size, max(available, 0))

        self._storage[key] = value
        self._sizes[key] = size
        self._total_bytes += size - previous
        self._stats.record_write()

    async def remove(self, key: str) -> bool:
        if key not in self._storage:
            return False
        del self._storage[key]
        self._total_bytes -= self._sizes.pop(key, 0)
        self._stats.record_removal()
        return True

    async def clear(self) -> None:
        self._storage.clear()
        self._sizes.clear()
        self._total_bytes = 0

    async def keys(self) -> List[str]:
        return list(self._storage.keys())

    async def size(self) -> int:
        return self._total_bytes

    # Testing utilities

    def get_entry_count(self) -> int:
        """Get the number of stored entries."""
        return len(self._storage)
