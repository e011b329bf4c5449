"""
PersistentCacheTier - On-disk L2 tier backed by SQLite through SQLAlchemy.

Entries are keyed by normalized query and hold the serialized ranked results
plus write time and TTL. The tier is bounded by total payload bytes: writes
that would overflow evict the oldest-written entries first. Expired entries
are misses and are deleted when touched.
"""

from datetime import datetime, timedelta
from typing import Any, Callable

from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy.exc import SQLAlchemyError

from medsearch.datastore.engine import CacheDatabase
from medsearch.datastore.repositories import SearchCacheRepository
from medsearch.models import Medication, RankedResults
from medsearch.services.cache import PERSISTENT_TIER, CacheTier
from medsearch.services.errors import CacheTierError

CACHED_RESULTS = TypeAdapter(RankedResults | list[Medication])


def dump_medications(value: RankedResults | list[Medication]) -> str:
    return CACHED_RESULTS.dump_json(value).decode("utf-8")


def load_medications(payload: str) -> RankedResults | list[Medication]:
    return CACHED_RESULTS.validate_json(payload)


class PersistentCacheTier(CacheTier):
    """
    Bounded persistent cache tier.

    Usage:
        tier = PersistentCacheTier("sqlite+aiosqlite:///./medsearch_cache.db")
        await tier.initialize()
        await tier.set("aspirin", medications)

    Every storage failure is raised as CacheTierError so the tiered cache can
    fall back to memory.
    """

    name = PERSISTENT_TIER

    def __init__(
        self,
        database_url: str,
        max_size_bytes: int = 45 * 1024 * 1024,
        default_ttl: timedelta = timedelta(hours=24),
        dumps: Callable[[Any], str] = dump_medications,
        loads: Callable[[str], Any] = load_medications,
        echo: bool = False,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._db = CacheDatabase(database_url, echo=echo)
        self._max_size_bytes = max_size_bytes
        self._default_ttl = default_ttl
        self._dumps = dumps
        self._loads = loads
        self._clock = clock
        self._debug = debug

        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._evictions = 0

    async def initialize(self) -> None:
        try:
            await self._db.init()
        except (SQLAlchemyError, OSError) as e:
            raise CacheTierError(f"Cannot open cache database: {e}") from e

    async def get(self, key: str) -> Any | None:
        now = self._clock()
        try:
            async with self._db.session() as session:
                repo = SearchCacheRepository(session)
                cached = await repo.get(key)
                if cached is None:
                    self._misses += 1
                    return None

                if now > cached.expires_at:
                    await repo.delete(key)
                    self._misses += 1
                    self._expired += 1
                    self._log(f"EXPIRED: {key[:50]}")
                    return None

                await repo.touch(key)
                payload = cached.payload
        except SQLAlchemyError as e:
            raise CacheTierError(f"Read failed for '{key}': {e}") from e

        try:
            value = self._loads(payload)
        except ValueError as e:
            logger.warning(f"Dropping unreadable cache entry '{key}': {e}")
            await self.delete(key)
            self._misses += 1
            return None

        self._hits += 1
        self._log(f"HIT: {key[:50]}")
        return value

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        ttl = ttl or self._default_ttl
        payload = self._dumps(value)
        size = len(payload.encode("utf-8"))

        if size > self._max_size_bytes:
            raise CacheTierError(
                f"Entry '{key}' ({size} bytes) exceeds the cache quota "
                f"of {self._max_size_bytes} bytes"
            )

        now = self._clock()
        try:
            async with self._db.session() as session:
                repo = SearchCacheRepository(session)
                existing = await repo.get(key)
                existing_size = existing.size_bytes if existing else 0
                current = await repo.total_size() - existing_size

                overflow = current + size - self._max_size_bytes
                if overflow > 0:
                    evicted, freed = await repo.evict_oldest(overflow, exclude=key)
                    self._evictions += evicted
                    self._log(f"EVICT: {evicted} entries, {freed} bytes")

                await repo.upsert(
                    key=key,
                    payload=payload,
                    size_bytes=size,
                    written_at=now,
                    ttl_seconds=ttl.total_seconds(),
                    expires_at=now + ttl,
                )
        except SQLAlchemyError as e:
            raise CacheTierError(f"Write failed for '{key}': {e}") from e

        self._log(f"SET: {key[:50]} ({size} bytes, TTL: {ttl.total_seconds()}s)")

    async def delete(self, key: str) -> bool:
        try:
            async with self._db.session() as session:
                freed = await SearchCacheRepository(session).delete(key)
        except SQLAlchemyError as e:
            raise CacheTierError(f"Delete failed for '{key}': {e}") from e
        return freed > 0

    async def clear(self) -> None:
        try:
            async with self._db.session() as session:
                await SearchCacheRepository(session).clear()
        except SQLAlchemyError as e:
            raise CacheTierError(f"Clear failed: {e}") from e
        logger.info("Persistent cache cleared")

    async def cleanup_expired(self) -> int:
        try:
            async with self._db.session() as session:
                return await SearchCacheRepository(session).cleanup_expired(
                    self._clock()
                )
        except SQLAlchemyError as e:
            raise CacheTierError(f"Cleanup failed: {e}") from e

    async def get_stats(self) -> dict[str, Any]:
        try:
            async with self._db.session() as session:
                stats = await SearchCacheRepository(session).get_cache_stats(
                    self._clock()
                )
        except SQLAlchemyError as e:
            raise CacheTierError(f"Stats failed: {e}") from e

        total = self._hits + self._misses
        stats.update(
            {
                "hits": self._hits,
                "misses": self._misses,
                "expired": self._expired,
                "evictions": self._evictions,
                "max_size_bytes": self._max_size_bytes,
                "hit_rate": f"{(self._hits / total if total else 0.0):.2%}",
            }
        )
        return stats

    async def close(self) -> None:
        await self._db.close()

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[PersistentCacheTier] {message}")
