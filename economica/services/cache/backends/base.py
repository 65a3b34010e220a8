"""Base interface for cache storage adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class AdapterStats:
    """Operation counters for a single storage adapter."""

    reads: int = 0
    writes: int = 0
    removals: int = 0
    errors: int = 0
    quota_rejections: int = 0

    def record_read(self) -> None:
        """Record a read."""
        self.reads += 1

    def record_write(self) -> None:
        """Record a write."""
        self.writes += 1

    def record_removal(self) -> None:
        """Record a removal."""
        self.removals += 1

    def record_error(self) -> None:
        """Record a backend error."""
        self.errors += 1

    def record_quota_rejection(self) -> None:
        """Record a write refused for lack of space."""
        self.quota_rejections += 1

    def reset(self) -> None:
        """Reset all statistics."""
        self.reads = 0
        self.writes = 0
        self.removals = 0
        self.errors = 0
        self.quota_rejections = 0


class StorageAdapter(ABC):
    """Uniform key-value contract over one cache tier's backing store.

    Values are opaque strings. Adapters raise ``StorageQuotaExceededError``
    when a write does not fit and ``StorageBackendError`` for any other
    backend failure; the cache decides what to do with either.
    """

    name: str = "storage"

    @property
    @abstractmethod
    def stats(self) -> AdapterStats:
        """Get adapter statistics."""
        ...

    async def connect(self) -> None:
        """Open the backing store. No-op by default."""

    async def disconnect(self) -> None:
        """Release the backing store. No-op by default."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Get a value.

        Args:
            key: The storage key.

        Returns:
            The stored string, or None if not found.
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Args:
            key: The storage key.
            value: Serialized entry.

        Raises:
            StorageQuotaExceededError: The value does not fit in the quota.
        """
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if the key existed.
        """
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key owned by this adapter."""
        ...

    @abstractmethod
    async def keys(self) -> List[str]:
        """List every stored key."""
        ...

    @abstractmethod
    async def size(self) -> int:
        """Total bytes stored."""
        ...
