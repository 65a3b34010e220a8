"""Tests for the cache storage adapters."""

import pytest
from unittest.mock import AsyncMock, MagicMock

import redis.asyncio as redis

from economica.core.errors import StorageBackendError, StorageQuotaExceededError
from economica.services.cache.backends import (
    MemoryStorageAdapter,
    RedisStorageAdapter,
    SQLiteStorageAdapter,
)


class TestMemoryStorageAdapter:
    """Tests for the in-process adapter."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        adapter = MemoryStorageAdapter()

        await adapter.set("a", "value")
        assert await adapter.get("a") == "value"
        assert await adapter.remove("a") is True
        assert await adapter.get("a") is None
        assert await adapter.remove("a") is False

    @pytest.mark.asyncio
    async def test_size_tracks_overwrites(self):
        adapter = MemoryStorageAdapter()

        await adapter.set("a", "12345")
        await adapter.set("a", "12")
        await adapter.set("b", "123")

        assert await adapter.size() == 5
        assert sorted(await adapter.keys()) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_quota_rejects_oversized_write(self):
        adapter = MemoryStorageAdapter(max_bytes=10, name="l1")
        await adapter.set("a", "x" * 8)

        with pytest.raises(StorageQuotaExceededError) as exc_info:
            await adapter.set("b", "y" * 5)

        assert exc_info.value.details["available"] == 2
        assert adapter.stats.quota_rejections == 1
        assert await adapter.get("b") is None

    @pytest.mark.asyncio
    async def test_quota_allows_replacing_existing_key(self):
        adapter = MemoryStorageAdapter(max_bytes=10)
        await adapter.set("a", "x" * 8)

        await adapter.set("a", "y" * 10)

        assert await adapter.size() == 10

    @pytest.mark.asyncio
    async def test_clear(self):
        adapter = MemoryStorageAdapter()
        await adapter.set("a", "1")
        await adapter.set("b", "2")

        await adapter.clear()

        assert adapter.get_entry_count() == 0
        assert await adapter.size() == 0


class TestSQLiteStorageAdapter:
    """Tests for the aiosqlite adapter."""

    @pytest.mark.asyncio
    async def test_round_trip_and_persistence(self, tmp_path):
        db_path = str(tmp_path / "store" / "cache.db")
        adapter = SQLiteStorageAdapter(db_path)
        await adapter.set("key", "stored value")

        reopened = SQLiteStorageAdapter(db_path)
        assert await reopened.get("key") == "stored value"
        assert await reopened.keys() == ["key"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_value(self, tmp_path):
        adapter = SQLiteStorageAdapter(str(tmp_path / "cache.db"))
        await adapter.set("key", "first")
        await adapter.set("key", "second!")

        assert await adapter.get("key") == "second!"
        assert await adapter.size() == len("second!")

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, tmp_path):
        adapter = SQLiteStorageAdapter(str(tmp_path / "cache.db"), quota_bytes=20, name="l2")
        await adapter.set("a", "x" * 15)

        with pytest.raises(StorageQuotaExceededError):
            await adapter.set("b", "y" * 10)

        assert await adapter.get("b") is None
        assert adapter.stats.quota_rejections == 1

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, tmp_path):
        adapter = SQLiteStorageAdapter(str(tmp_path / "cache.db"))
        await adapter.set("a", "1")
        await adapter.set("b", "2")

        assert await adapter.remove("a") is True
        assert await adapter.remove("a") is False

        await adapter.clear()
        assert await adapter.keys() == []
        assert await adapter.size() == 0


def _scan(keys):
    async def scan_iter(match=None):
        for key in keys:
            yield key
    return scan_iter


class TestRedisStorageAdapter:
    """Tests for the Redis adapter against a mocked client."""

    def _client(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock(return_value=True)
        client.delete = AsyncMock(return_value=1)
        client.strlen = AsyncMock(return_value=4)
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_keys_are_namespaced(self):
        client = self._client()
        client.get = AsyncMock(return_value="cached")
        adapter = RedisStorageAdapter("redis://unused", prefix="test:", client=client)

        await adapter.set("abc", "value")
        value = await adapter.get("abc")

        client.set.assert_awaited_once_with("test:abc", "value")
        client.get.assert_awaited_once_with("test:abc")
        assert value == "cached"

    @pytest.mark.asyncio
    async def test_keys_strip_prefix(self):
        client = self._client()
        client.scan_iter = _scan(["test:a", "test:b"])
        adapter = RedisStorageAdapter("redis://unused", prefix="test:", client=client)

        assert await adapter.keys() == ["a", "b"]
        assert await adapter.size() == 8

    @pytest.mark.asyncio
    async def test_oom_maps_to_quota_error(self):
        client = self._client()
        client.set = AsyncMock(side_effect=redis.ResponseError("OOM command not allowed when used memory > 'maxmemory'"))
        adapter = RedisStorageAdapter("redis://unused", client=client, name="l3")

        with pytest.raises(StorageQuotaExceededError):
            await adapter.set("abc", "value")
        assert adapter.stats.quota_rejections == 1

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_backend_error(self):
        client = self._client()
        client.get = AsyncMock(side_effect=redis.ConnectionError("refused"))
        adapter = RedisStorageAdapter("redis://unused", client=client)

        with pytest.raises(StorageBackendError):
            await adapter.get("abc")
        assert adapter.stats.errors == 1

    @pytest.mark.asyncio
    async def test_remove_reports_existence(self):
        client = self._client()
        client.delete = AsyncMock(return_value=0)
        adapter = RedisStorageAdapter("redis://unused", client=client)

        assert await adapter.remove("missing") is False

    @pytest.mark.asyncio
    async def test_disconnect_closes_client(self):
        client = self._client()
        adapter = RedisStorageAdapter("redis://unused", client=client)

        await adapter.connect()
        await adapter.disconnect()

        client.ping.assert_awaited_once()
        client.aclose.assert_awaited_once()
        with pytest.raises(StorageBackendError):
            adapter.client
