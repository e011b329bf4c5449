"""
TieredCache - Two-level async cache for search results.

Features:
- Memory L1 tier with LRU eviction and TTL
- Optional persistent L2 tier (bounded by bytes, longer TTL)
- Read-through promotion of L2 hits into L1
- L2 failures degrade to memory-only instead of failing the caller
"""

import asyncio
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

from medsearch.services.errors import CacheTierError

T = TypeVar("T")

MEMORY_TIER = "memory"
PERSISTENT_TIER = "persistent"


def normalize_key(key: str) -> str:
    """Normalize a query for consistent caching."""
    return key.strip().lower()


@dataclass
class CacheEntry(Generic[T]):
    """A single memory cache entry with metadata."""

    data: T
    written_at: datetime
    ttl: timedelta
    hit_count: int = 0

    @property
    def expires_at(self) -> datetime:
        return self.written_at + self.ttl

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now > self.expires_at


@dataclass
class CacheHit(Generic[T]):
    """Result from cache lookup."""

    data: T
    tier: str  # 'memory' | 'persistent'


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class CacheTier(ABC):
    """One level of the tiered cache."""

    name: str

    async def initialize(self) -> None:
        """Prepare the tier. Raise CacheTierError if it cannot be used."""

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def cleanup_expired(self) -> int: ...

    @abstractmethod
    async def get_stats(self) -> dict[str, Any]: ...

    async def close(self) -> None:
        """Release resources held by the tier."""


class MemoryCacheTier(CacheTier):
    """
    Bounded in-memory LRU tier.

    Usage:
        tier = MemoryCacheTier(max_entries=100, default_ttl=timedelta(minutes=30))
        await tier.set("aspirin", medications)
        medications = await tier.get("aspirin")
    """

    name = MEMORY_TIER

    def __init__(
        self,
        max_entries: int = 100,
        default_ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        # Ordered oldest access first
        self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    async def get(self, key: str) -> Any | None:
        """Return the value and refresh its recency, or None on miss/expiry."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._stats.misses += 1
                self._stats.expired += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._entries.move_to_end(key)
            entry.hit_count += 1
            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry.data

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        ttl = ttl or self._default_ttl
        entry = CacheEntry(data=value, written_at=self._clock(), ttl=ttl)

        async with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self._max_entries:
                self._evict_lru()

            self._entries[key] = entry
            self._log(f"SET: {key[:50]} (TTL: {ttl.total_seconds()}s)")

    async def has(self, key: str) -> bool:
        """Check presence without touching recency."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self._entries:
                del self._entries[key]
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            self._stats.expired += len(expired_keys)

            if expired_keys:
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")
            return len(expired_keys)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._entries)

    def _evict_lru(self) -> None:
        """Evict the least recently used entry."""
        if not self._entries:
            return
        oldest_key, _ = self._entries.popitem(last=False)
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    async def get_stats(self) -> dict[str, Any]:
        self._stats.size = len(self._entries)
        self._stats.max_size = self._max_entries
        return self._stats.to_dict()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[MemoryCacheTier] {message}")


class TieredCache:
    """
    Memory tier in front of an optional persistent tier.

    Usage:
        cache = TieredCache(MemoryCacheTier(), PersistentCacheTier(database_url))

        hit = await cache.get("Aspirin ")
        if hit:
            return hit.data  # hit.tier tells which tier served it

        await cache.set("aspirin", medications)

    Memory hits never wait on persistent tier I/O. ``clear`` bumps a
    generation counter before and after emptying the tiers (odd while a clear
    runs); a persistent read that overlaps a clear is dropped instead of
    returned or promoted. Persistent tier errors (CacheTierError) are logged
    and swallowed; the cache keeps working from memory.
    """

    def __init__(
        self,
        memory: MemoryCacheTier | None = None,
        persistent: CacheTier | None = None,
        eviction_policy: str = "lru",
        debug: bool = False,
    ):
        if eviction_policy != "lru":
            raise ValueError(f"Unsupported eviction policy: {eviction_policy!r}")

        self._memory = memory or MemoryCacheTier(debug=debug)
        self._persistent = persistent
        self._persistent_available = False
        self._initialized = False
        self._debug = debug
        self._init_lock = asyncio.Lock()
        self._clear_lock = asyncio.Lock()
        self._generation = 0

    @property
    def memory(self) -> MemoryCacheTier:
        return self._memory

    @property
    def persistent_available(self) -> bool:
        return self._persistent_available

    async def initialize(self) -> None:
        await self._ensure_initialized()

    async def _ensure_initialized(self) -> None:
        """Bring up the persistent tier once."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            if self._persistent is None:
                logger.info("Persistent cache tier not configured, using memory only")
            else:
                try:
                    await self._persistent.initialize()
                    self._persistent_available = True
                    removed = await self._persistent.cleanup_expired()
                    logger.info(
                        f"Persistent cache tier initialized "
                        f"({removed} expired entries purged)"
                    )
                except CacheTierError as e:
                    self._persistent_available = False
                    logger.warning(
                        f"Persistent cache tier unavailable, using memory only: {e}"
                    )

            self._initialized = True

    @property
    def _clearing(self) -> bool:
        return self._generation % 2 == 1

    async def get(self, key: str) -> CacheHit[Any] | None:
        """Look up memory first, then the persistent tier."""
        key = normalize_key(key)
        await self._ensure_initialized()

        data = await self._memory.get(key)
        if data is not None:
            return CacheHit(data=data, tier=MEMORY_TIER)

        if not self._persistent_available:
            return None

        generation = self._generation
        if self._clearing:
            return None

        try:
            data = await self._persistent.get(key)
        except CacheTierError as e:
            logger.error(f"Persistent cache read failed for '{key}': {e}")
            return None

        if data is None:
            self._log(f"MISS: {key[:50]}")
            return None

        if self._generation != generation:
            self._log(f"DROPPED (cleared during read): {key[:50]}")
            return None

        # Promote for next time
        await self._memory.set(key, data)
        return CacheHit(data=data, tier=PERSISTENT_TIER)

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """Write to both tiers. A persistent tier failure keeps the entry memory-only."""
        key = normalize_key(key)
        await self._ensure_initialized()

        await self._memory.set(key, value, ttl)

        if self._persistent_available:
            try:
                await self._persistent.set(key, value, ttl)
            except CacheTierError as e:
                logger.error(
                    f"Persistent cache write failed for '{key}', "
                    f"keeping it in memory only: {e}"
                )

        self._log(f"SET: {key[:50]} (ttl={ttl or 'default'})")

    async def has(self, key: str) -> bool:
        key = normalize_key(key)
        await self._ensure_initialized()
        if await self._memory.has(key):
            return True
        if not self._persistent_available or self._clearing:
            return False
        try:
            return await self._persistent.get(key) is not None
        except CacheTierError:
            return False

    async def delete(self, key: str) -> None:
        key = normalize_key(key)
        await self._ensure_initialized()
        await self._memory.delete(key)
        if self._persistent_available:
            try:
                await self._persistent.delete(key)
            except CacheTierError as e:
                logger.error(f"Persistent cache delete failed for '{key}': {e}")

    async def clear(self) -> None:
        """Empty both tiers. Persistent reads overlapping the clear are discarded."""
        await self._ensure_initialized()
        async with self._clear_lock:
            self._generation += 1
            try:
                await self._memory.clear()
                if self._persistent_available:
                    try:
                        await self._persistent.clear()
                    except CacheTierError as e:
                        logger.error(f"Failed to clear persistent cache: {e}")
            finally:
                self._generation += 1
        logger.info("All caches cleared")

    async def cleanup_expired(self) -> dict[str, int]:
        """Purge expired entries from both tiers."""
        await self._ensure_initialized()
        memory_removed = await self._memory.cleanup_expired()
        persistent_removed = 0
        if self._persistent_available:
            try:
                persistent_removed = await self._persistent.cleanup_expired()
            except CacheTierError as e:
                logger.error(f"Persistent cache cleanup failed: {e}")

        if memory_removed or persistent_removed:
            logger.info(
                f"Cache cleanup completed: memory={memory_removed}, "
                f"persistent={persistent_removed}"
            )
        return {MEMORY_TIER: memory_removed, PERSISTENT_TIER: persistent_removed}

    async def get_stats(self) -> dict[str, Any]:
        """Combined statistics for both tiers."""
        memory_stats = await self._memory.get_stats()

        persistent_stats = None
        if self._persistent_available:
            try:
                persistent_stats = await self._persistent.get_stats()
            except CacheTierError as e:
                logger.error(f"Failed to get persistent cache stats: {e}")

        return {
            MEMORY_TIER: memory_stats,
            PERSISTENT_TIER: persistent_stats,
            "combined": {
                "total_entries": memory_stats["size"]
                + (persistent_stats or {}).get("active_entries", 0),
                "persistent_available": self._persistent_available,
            },
        }

    async def close(self) -> None:
        if self._persistent is not None:
            await self._persistent.close()
        self._persistent_available = False
        self._initialized = False

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TieredCache] {message}")
