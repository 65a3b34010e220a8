"""Multi-tier response cache.

Composes three storage adapters into tiers:
- L1: hot, small entries (< 10KB), capped by entry count
- L2: warm, medium entries (< 100KB)
- L3: cold, everything up to the L3 ceiling

Writes land in every tier an entry qualifies for by size. Reads probe
L1 -> L2 -> L3 and promote lower-tier hits upward. Expiry is per query
type; emergency queries never touch the cache.
"""

import asyncio
import base64
import binascii
import json
import math
import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from economica.core.config import CacheSettings, QueryTypeSettings, default_query_types
from economica.core.errors import StorageBackendError, StorageQuotaExceededError
from economica.core.logging import get_logger
from economica.models.query import QueryType
from economica.services.cache.backends.base import StorageAdapter
from economica.services.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)


class CacheTier(str, Enum):
    L1 = "l1"
    L2 = "l2"
    L3 = "l3"


TIERS = (CacheTier.L1, CacheTier.L2, CacheTier.L3)


class HealthVerdict(str, Enum):
    GOOD = "good"
    DEGRADED = "degraded"
    POOR = "poor"


@dataclass
class CacheEntry:
    """A cached payload with its bookkeeping."""

    key: str
    data: Any
    created_at: float
    expires_at: float
    last_accessed: float
    access_count: int = 0
    size: int = 0
    tier: CacheTier = CacheTier.L1
    compressed: bool = False
    type: str = QueryType.GENERAL.value

    def is_expired(self, now: float) -> bool:
        """Check if the entry has expired."""
        return now > self.expires_at

    def meta(self) -> "EntryMeta":
        return EntryMeta(
            type=self.type,
            size=self.size,
            created_at=self.created_at,
            expires_at=self.expires_at,
            last_accessed=self.last_accessed,
            access_count=self.access_count,
            compressed=self.compressed,
        )


@dataclass
class EntryMeta:
    """Index record for one key in one tier."""

    type: str
    size: int
    created_at: float
    expires_at: float
    last_accessed: float
    access_count: int = 0
    compressed: bool = False


@dataclass
class MultiTierCacheStats:
    """Counters for cache performance monitoring."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    skipped: int = 0
    errors: int = 0
    evictions: int = 0
    expirations: int = 0
    promotions: int = 0
    bytes_saved: int = 0
    tier_hits: Dict[str, int] = field(default_factory=lambda: {tier.value: 0 for tier in TIERS})

    @property
    def total_requests(self) -> int:
        """Total number of cache lookups."""
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def record_hit(self, tier: CacheTier) -> None:
        """Record a cache hit."""
        self.hits += 1
        self.tier_hits[tier.value] += 1

    def record_miss(self) -> None:
        """Record a cache miss."""
        self.misses += 1

    def record_error(self) -> None:
        """Record a storage error."""
        self.errors += 1

    def reset(self) -> None:
        """Reset all statistics."""
        self.hits = 0
        self.misses = 0
        self.sets = 0
        self.skipped = 0
        self.errors = 0
        self.evictions = 0
        self.expirations = 0
        self.promotions = 0
        self.bytes_saved = 0
        self.tier_hits = {tier.value: 0 for tier in TIERS}


@dataclass
class CacheHealth:
    status: HealthVerdict
    issues: List[str]
    recommendations: List[str]
    hit_rate: float
    size_usage: float
    entry_usage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "issues": self.issues,
            "recommendations": self.recommendations,
            "hit_rate": round(self.hit_rate, 4),
            "size_usage": round(self.size_usage, 4),
            "entry_usage": round(self.entry_usage, 4),
        }


class MultiTierCache:
    """Three-tier TTL cache over pluggable storage adapters.

    Usage:
        cache = MultiTierCache(l1, l2, l3, settings.cache, settings.query_types)
        await cache.start()

        await cache.set(key, response.model_dump(mode="json"), QueryType.PROTOCOL)
        payload = await cache.get(key, QueryType.PROTOCOL)

    Each tier's adapter writes and index updates happen under that tier's
    lock. A promotion racing a fresh write of the same key resolves as last
    write wins; both carry a complete, self-consistent entry.
    """

    def __init__(
        self,
        l1: StorageAdapter,
        l2: StorageAdapter,
        l3: StorageAdapter,
        config: Optional[CacheSettings] = None,
        query_types: Optional[Dict[str, QueryTypeSettings]] = None,
        monitor: Optional[PerformanceMonitor] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            l1: Hot tier adapter.
            l2: Warm tier adapter.
            l3: Cold tier adapter.
            config: Size, TTL and eviction settings.
            query_types: Per query type TTL and caching switches.
            monitor: Optional event sink.
            clock: Wall clock in seconds; injectable for tests.
        """
        self.config = config or CacheSettings()
        self.query_types = query_types or default_query_types()
        self.monitor = monitor
        self._clock = clock

        self._adapters: Dict[CacheTier, StorageAdapter] = {
            CacheTier.L1: l1,
            CacheTier.L2: l2,
            CacheTier.L3: l3,
        }
        self._index: Dict[CacheTier, Dict[str, EntryMeta]] = {tier: {} for tier in TIERS}
        self._locks: Dict[CacheTier, asyncio.Lock] = {tier: asyncio.Lock() for tier in TIERS}
        self._stats = MultiTierCacheStats()
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def stats(self) -> MultiTierCacheStats:
        """Get raw counters."""
        return self._stats

    def adapter(self, tier: CacheTier) -> StorageAdapter:
        return self._adapters[tier]

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, background: bool = True) -> None:
        """Connect adapters, rebuild the index and start the cleanup sweep."""
        for tier in TIERS:
            await self._adapters[tier].connect()

        await self.cleanup()

        if background and self.config.cleanup_interval_seconds > 0 and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Multi-tier cache started with %d entries", self.entry_count)

    async def stop(self) -> None:
        """Stop the sweep and disconnect adapters."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for tier in TIERS:
            await self._adapters[tier].disconnect()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            try:
                removed = await self.cleanup()
                evicted = await self.optimize()
                logger.info(
                    "Cache sweep removed %d expired and evicted %d entries", removed, evicted,
                    extra={"event": "cache_sweep", "expired": removed, "evicted": evicted},
                )
            except Exception as e:
                logger.error(f"Cache sweep failed: {e}", exc_info=True)

    # =========================================================================
    # Public Operations
    # =========================================================================

    def ttl_for(self, query_type: QueryType) -> int:
        """TTL in seconds for a query type; 0 means don't cache."""
        type_settings = self.query_types.get(query_type.value) or self.query_types.get(QueryType.GENERAL.value)
        if type_settings is None or not type_settings.cache_enabled:
            return 0
        return type_settings.cache_ttl

    async def get(self, key: str, query_type: QueryType = QueryType.GENERAL) -> Optional[Any]:
        """Look a key up across tiers.

        Args:
            key: Cache key.
            query_type: Type of the query the key belongs to.

        Returns:
            The cached payload, or None on miss, expiry or storage error.
        """
        if not self.enabled or query_type == QueryType.EMERGENCY:
            return None

        now = self._clock()
        for tier in TIERS:
            entry = await self._read(tier, key)
            if entry is None:
                continue

            if entry.is_expired(now):
                await self._drop(tier, key)
                self._stats.expirations += 1
                continue

            entry.last_accessed = now
            entry.access_count += 1
            meta = self._index[tier].get(key)
            if meta is not None:
                meta.last_accessed = now
                meta.access_count = entry.access_count
            else:
                self._index[tier][key] = entry.meta()

            self._stats.record_hit(tier)
            if self.monitor:
                self.monitor.record_cache_event("hit", tier.value, key)

            if tier != CacheTier.L1:
                await self._promote(entry, tier)
            return entry.data

        self._stats.record_miss()
        if self.monitor:
            self.monitor.record_cache_event("miss", key=key)
        return None

    async def set(
        self,
        key: str,
        data: Any,
        query_type: QueryType = QueryType.GENERAL,
        ttl: Optional[int] = None,
    ) -> bool:
        """Store a payload in every tier it qualifies for.

        Never raises; caching is best effort.

        Returns:
            True if at least one tier accepted the entry.
        """
        if not self.enabled:
            return False

        ttl = self.ttl_for(query_type) if ttl is None else ttl
        if query_type == QueryType.EMERGENCY or ttl <= 0:
            self._stats.skipped += 1
            if self.monitor:
                self.monitor.record_cache_event("skip", key=key)
            return False

        try:
            serialized = json.dumps(data, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache payload for {key} is not serializable: {e}")
            self._stats.record_error()
            return False

        size = len(serialized.encode("utf-8"))
        if size > self.config.l3_max_entry_size:
            logger.warning(f"Cache payload for {key} too large ({size} bytes), not cached")
            self._stats.skipped += 1
            return False

        now = self._clock()
        entry = CacheEntry(
            key=key,
            data=data,
            created_at=now,
            expires_at=now + ttl,
            last_accessed=now,
            size=size,
            type=query_type.value,
        )
        payload, entry.compressed = self._compress(serialized)
        encoded = self._encode(entry, payload)

        written: List[CacheTier] = []
        for tier in TIERS:
            if self._qualifies(tier, size):
                if await self._write_tier(tier, key, encoded, entry.meta()):
                    written.append(tier)
            elif key in self._index[tier]:
                # Old, smaller version of this key must not shadow the new one
                await self._drop(tier, key)

        if not written:
            return False

        self._stats.sets += 1
        if self.monitor:
            self.monitor.record_cache_event("set", written[0].value, key)
        logger.debug(
            "Cached %s in %s", key, ",".join(tier.value for tier in written),
            extra={"event": "cache_set", "cache_key": key, "size": size, "compressed": entry.compressed},
        )

        await self._enforce_l1_cap()
        if self.total_size > self.config.max_size_bytes or self.entry_count > self.config.max_entries:
            await self.optimize()
        return True

    async def remove(self, key: str) -> bool:
        """Remove a key from every tier."""
        removed = False
        for tier in TIERS:
            removed = await self._drop(tier, key) or removed
        return removed

    async def clear(self) -> None:
        """Remove everything and reset statistics."""
        for tier in TIERS:
            async with self._locks[tier]:
                try:
                    await self._adapters[tier].clear()
                except StorageBackendError as e:
                    logger.warning(f"Failed to clear {tier.value}: {e}")
                    self._stats.record_error()
                self._index[tier].clear()
        self._stats.reset()
        logger.info("Cache cleared")

    async def warm(self, items: Iterable[Tuple[str, Any, QueryType]]) -> int:
        """Preload payloads; returns how many were stored."""
        stored = 0
        for key, data, query_type in items:
            if await self.set(key, data, query_type):
                stored += 1
        logger.info(f"Cache warmed with {stored} entries")
        return stored

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup(self) -> int:
        """Remove expired and malformed entries from every tier.

        Also rebuilds the in-memory index from what the adapters hold.

        Returns:
            Number of stored records removed.
        """
        now = self._clock()
        removed = 0

        for tier in TIERS:
            adapter = self._adapters[tier]
            try:
                keys = await adapter.keys()
            except StorageBackendError as e:
                logger.warning(f"Cleanup could not list {tier.value}: {e}")
                self._stats.record_error()
                continue

            listed = set(keys)
            rebuilt: Dict[str, EntryMeta] = {}
            for key in keys:
                entry = await self._read(tier, key)
                if entry is None:
                    # Unreadable records were already dropped by _read
                    removed += 1
                    continue
                if entry.is_expired(now):
                    await self._drop(tier, key)
                    self._stats.expirations += 1
                    removed += 1
                    continue
                known = self._index[tier].get(key)
                rebuilt[key] = known if known is not None else entry.meta()

            async with self._locks[tier]:
                # Keep anything written while we were scanning
                for key, meta in self._index[tier].items():
                    if key not in rebuilt and key not in listed:
                        rebuilt[key] = meta
                self._index[tier] = rebuilt

        if removed:
            logger.info(f"Cache cleanup removed {removed} records")
        return removed

    async def optimize(self) -> int:
        """Evict least recently accessed entries until under the size and count limits.

        Returns:
            Number of keys evicted.
        """
        evicted = 0
        while True:
            entries = self._unique_entries()
            total = sum(size for _, size in entries.values())
            if total <= self.config.max_size_bytes and len(entries) <= self.config.max_entries:
                break
            if not entries:
                break

            batch = max(1, math.ceil(len(entries) * self.config.eviction_fraction))
            victims = sorted(entries, key=lambda key: entries[key][0])[:batch]
            for key in victims:
                await self.remove(key)
                evicted += 1

        if evicted:
            self._stats.evictions += evicted
            logger.info(
                f"Cache optimizer evicted {evicted} entries",
                extra={"event": "cache_evict", "evicted": evicted, "total_size": self.total_size},
            )
        return evicted

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    @property
    def entry_count(self) -> int:
        return len(self._unique_entries())

    @property
    def total_size(self) -> int:
        """Logical bytes held, each key counted once."""
        return sum(size for _, size in self._unique_entries().values())

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of counters and contents."""
        merged: Dict[str, EntryMeta] = {}
        for tier in reversed(TIERS):
            merged.update(self._index[tier])

        type_distribution: Dict[str, int] = {}
        for meta in merged.values():
            type_distribution[meta.type] = type_distribution.get(meta.type, 0) + 1

        total_size = sum(meta.size for meta in merged.values())
        created = [meta.created_at for meta in merged.values()]

        def as_iso(timestamp: Optional[float]) -> Optional[str]:
            if timestamp is None:
                return None
            return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()

        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "hit_rate": self._stats.hit_rate,
            "sets": self._stats.sets,
            "skipped": self._stats.skipped,
            "errors": self._stats.errors,
            "evictions": self._stats.evictions,
            "expirations": self._stats.expirations,
            "promotions": self._stats.promotions,
            "tier_hits": dict(self._stats.tier_hits),
            "entry_count": len(merged),
            "total_size": total_size,
            "average_size": total_size / len(merged) if merged else 0.0,
            "type_distribution": type_distribution,
            "oldest_entry": as_iso(min(created)) if created else None,
            "newest_entry": as_iso(max(created)) if created else None,
            "compressed_entries": sum(1 for meta in merged.values() if meta.compressed),
            "bytes_saved": self._stats.bytes_saved,
            "tiers": {
                tier.value: {
                    "entries": len(self._index[tier]),
                    "bytes": sum(meta.size for meta in self._index[tier].values()),
                }
                for tier in TIERS
            },
        }

    def health(self) -> CacheHealth:
        """Coarse verdict from hit rate and capacity usage."""
        issues: List[str] = []
        recommendations: List[str] = []

        hit_rate = self._stats.hit_rate
        if (
            self._stats.total_requests >= self.config.health_min_requests
            and hit_rate < self.config.health_hit_rate_threshold
        ):
            issues.append(f"Low hit rate: {hit_rate:.1%}")
            recommendations.append("Review per-type TTLs or warm the cache with frequent queries")

        size_usage = self.total_size / self.config.max_size_bytes if self.config.max_size_bytes else 0.0
        if size_usage > 0.9:
            issues.append(f"Cache size near limit: {size_usage:.1%}")
            recommendations.append("Raise max_size_bytes or shorten TTLs")

        entry_usage = self.entry_count / self.config.max_entries if self.config.max_entries else 0.0
        if entry_usage > 0.9:
            issues.append(f"Entry count near limit: {entry_usage:.1%}")
            recommendations.append("Raise max_entries or run cleanup more often")

        if not issues:
            status = HealthVerdict.GOOD
        elif len(issues) < 3:
            status = HealthVerdict.DEGRADED
        else:
            status = HealthVerdict.POOR

        return CacheHealth(
            status=status,
            issues=issues,
            recommendations=recommendations,
            hit_rate=hit_rate,
            size_usage=size_usage,
            entry_usage=entry_usage,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _qualifies(self, tier: CacheTier, size: int) -> bool:
        if tier == CacheTier.L1:
            return size < self.config.l1_max_entry_size
        if tier == CacheTier.L2:
            return size < self.config.l2_max_entry_size
        return size <= self.config.l3_max_entry_size

    def _unique_entries(self) -> Dict[str, Tuple[float, int]]:
        """key -> (most recent access in any tier, logical size)."""
        entries: Dict[str, Tuple[float, int]] = {}
        for tier in TIERS:
            for key, meta in self._index[tier].items():
                previous = entries.get(key)
                if previous is None or meta.last_accessed > previous[0]:
                    entries[key] = (meta.last_accessed, meta.size)
        return entries

    def _compress(self, serialized: str) -> Tuple[str, bool]:
        if not self.config.compression_enabled or len(serialized) < self.config.compression_min_size:
            return serialized, False
        try:
            packed = zlib.compress(serialized.encode("utf-8"), self.config.compression_level)
            encoded = base64.b64encode(packed).decode("ascii")
        except (zlib.error, ValueError) as e:
            logger.warning(f"Compression failed, storing uncompressed: {e}")
            return serialized, False

        if len(encoded) >= len(serialized):
            return serialized, False
        self._stats.bytes_saved += len(serialized) - len(encoded)
        return encoded, True

    @staticmethod
    def _encode(entry: CacheEntry, payload: str) -> str:
        return json.dumps({
            "key": entry.key,
            "type": entry.type,
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
            "last_accessed": entry.last_accessed,
            "access_count": entry.access_count,
            "size": entry.size,
            "compressed": entry.compressed,
            "payload": payload,
        })

    @staticmethod
    def _decode(raw: str, tier: CacheTier) -> CacheEntry:
        record = json.loads(raw)
        payload = record["payload"]
        if record.get("compressed"):
            payload = zlib.decompress(base64.b64decode(payload)).decode("utf-8")
        return CacheEntry(
            key=record["key"],
            data=json.loads(payload),
            created_at=float(record["created_at"]),
            expires_at=float(record["expires_at"]),
            last_accessed=float(record["last_accessed"]),
            access_count=int(record.get("access_count", 0)),
            size=int(record["size"]),
            tier=tier,
            compressed=bool(record.get("compressed")),
            type=record.get("type", QueryType.GENERAL.value),
        )

    async def _read(self, tier: CacheTier, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._adapters[tier].get(key)
        except StorageBackendError as e:
            logger.warning(f"Cache read from {tier.value} failed for {key}: {e}")
            self._stats.record_error()
            return None

        if raw is None:
            self._index[tier].pop(key, None)
            return None

        try:
            return self._decode(raw, tier)
        except (ValueError, KeyError, TypeError, zlib.error, binascii.Error) as e:
            logger.warning(f"Dropping malformed cache record {key} in {tier.value}: {e}")
            await self._drop(tier, key)
            return None

    async def _drop(self, tier: CacheTier, key: str) -> bool:
        async with self._locks[tier]:
            self._index[tier].pop(key, None)
            try:
                return await self._adapters[tier].remove(key)
            except StorageBackendError as e:
                logger.warning(f"Cache remove from {tier.value} failed for {key}: {e}")
                self._stats.record_error()
                return False

    async def _write_tier(self, tier: CacheTier, key: str, encoded: str, meta: EntryMeta) -> bool:
        adapter = self._adapters[tier]
        async with self._locks[tier]:
            try:
                await adapter.set(key, encoded)
            except StorageQuotaExceededError:
                logger.warning(f"Quota exceeded on {tier.value}, reclaiming space and retrying")
                await self._reclaim_space_locked(tier)
                try:
                    await adapter.set(key, encoded)
                except StorageBackendError as e:
                    logger.warning(f"Cache write to {tier.value} failed after cleanup for {key}: {e}")
                    self._stats.record_error()
                    return False
            except StorageBackendError as e:
                logger.warning(f"Cache write to {tier.value} failed for {key}: {e}")
                self._stats.record_error()
                return False

            self._index[tier][key] = meta
            return True

    async def _reclaim_space_locked(self, tier: CacheTier) -> None:
        """Drop expired then least recently used records. Caller holds the tier lock."""
        adapter = self._adapters[tier]
        index = self._index[tier]
        now = self._clock()

        expired = [key for key, meta in index.items() if now > meta.expires_at]
        by_age = sorted(
            (key for key in index if key not in expired),
            key=lambda key: index[key].last_accessed,
        )
        oldest = by_age[:math.ceil(len(by_age) * self.config.quota_cleanup_fraction)]

        for key in expired + oldest:
            index.pop(key, None)
            try:
                await adapter.remove(key)
            except StorageBackendError as e:
                logger.warning(f"Reclaim on {tier.value} could not remove {key}: {e}")
                self._stats.record_error()

        self._stats.expirations += len(expired)
        self._stats.evictions += len(oldest)

    async def _promote(self, entry: CacheEntry, found_in: CacheTier) -> None:
        payload = json.dumps(entry.data, default=str)
        payload, entry.compressed = self._compress(payload)
        encoded = self._encode(entry, payload)

        for tier in TIERS:
            if tier == found_in:
                break
            if self._qualifies(tier, entry.size):
                if await self._write_tier(tier, entry.key, encoded, entry.meta()):
                    self._stats.promotions += 1
                    if tier == CacheTier.L1:
                        await self._enforce_l1_cap()

    async def _enforce_l1_cap(self) -> None:
        index = self._index[CacheTier.L1]
        overflow = len(index) - self.config.l1_max_entries
        if overflow <= 0:
            return

        oldest = sorted(index, key=lambda key: index[key].last_accessed)[:overflow]
        for key in oldest:
            await self._drop(CacheTier.L1, key)
        self._stats.evictions += len(oldest)
