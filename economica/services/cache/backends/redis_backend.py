"""Redis storage adapter for the durable cache tier."""

from typing import List, Optional

import redis.asyncio as redis

from economica.core.errors import StorageBackendError, StorageQuotaExceededError
from economica.core.logging import get_logger
from economica.services.cache.backends.base import AdapterStats, StorageAdapter

logger = get_logger(__name__)


class RedisStorageAdapter(StorageAdapter):
    """Redis-backed adapter for large, long-lived entries.

    Keys are namespaced under ``prefix`` so ``clear`` and ``keys`` only touch
    this adapter's data. Redis refusing a write under ``maxmemory`` surfaces
    as ``StorageQuotaExceededError``.
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "economica:cache:",
        client: Optional[redis.Redis] = None,
        name: str = "redis",
    ):
        """Initialize Redis adapter.

        Args:
            redis_url: Redis connection URL.
            prefix: Namespace for stored keys.
            client: Pre-built client, mainly for tests.
            name: Label used in logs and errors.
        """
        self.name = name
        self._redis_url = redis_url
        self._prefix = prefix
        self._client: Optional[redis.Redis] = client
        self._stats = AdapterStats()

    @property
    def stats(self) -> AdapterStats:
        """Get adapter statistics."""
        return self._stats

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise StorageBackendError("Redis adapter is not connected", self.name)
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        try:
            await self._client.ping()
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise StorageBackendError(f"Failed to connect to Redis: {e}", self.name, "connect") from e
        logger.info("Connected to Redis cache store")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Disconnected from Redis cache store")

    async def get(self, key: str) -> Optional[str]:
        self._stats.record_read()
        try:
            return await self.client.get(self._key(key))
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis GET error for key {key}: {e}", self.name, "get") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(self._key(key), value)
        except redis.ResponseError as e:
            if str(e).startswith("OOM"):
                self._stats.record_quota_rejection()
                raise StorageQuotaExceededError(self.name, len(value.encode("utf-8")), 0) from e
            self._stats.record_error()
            raise StorageBackendError(f"Redis SET error for key {key}: {e}", self.name, "set") from e
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis SET error for key {key}: {e}", self.name, "set") from e
        self._stats.record_write()

    async def remove(self, key: str) -> bool:
        try:
            removed = await self.client.delete(self._key(key)) > 0
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis DELETE error for key {key}: {e}", self.name, "remove") from e
        if removed:
            self._stats.record_removal()
        return removed

    async def clear(self) -> None:
        try:
            keys = [key async for key in self.client.scan_iter(match=f"{self._prefix}*")]
            if keys:
                await self.client.delete(*keys)
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis CLEAR error: {e}", self.name, "clear") from e

    async def keys(self) -> List[str]:
        try:
            return [
                key[len(self._prefix):]
                async for key in self.client.scan_iter(match=f"{self._prefix}*")
            ]
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis KEYS error: {e}", self.name, "keys") from e

    async def size(self) -> int:
        try:
            total = 0
            async for key in self.client.scan_iter(match=f"{self._prefix}*"):
                total += await self.client.strlen(key)
            return total
        except redis.RedisError as e:
            self._stats.record_error()
            raise StorageBackendError(f"Redis SIZE error: {e}", self.name, "size") from e
