"""
Repository layer - data access for the persistent search cache.
"""

from datetime import datetime

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from medsearch.datastore.models import SearchCacheDB


class SearchCacheRepository:
    """Search cache Repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> SearchCacheDB | None:
        result = await self.session.execute(
            select(SearchCacheDB).where(SearchCacheDB.key == key)
        )
        return result.scalar_one_or_none()

    async def touch(self, key: str) -> None:
        """Bump the hit counter of an entry."""
        await self.session.execute(
            update(SearchCacheDB)
            .where(SearchCacheDB.key == key)
            .values(hit_count=SearchCacheDB.hit_count + 1)
        )

    async def upsert(
        self,
        key: str,
        payload: str,
        size_bytes: int,
        written_at: datetime,
        ttl_seconds: float,
        expires_at: datetime,
    ) -> int:
        """Insert or replace an entry. Returns the size of the replaced entry (0 if new)."""
        cached = await self.get(key)

        if cached:
            previous_size = cached.size_bytes
            cached.payload = payload
            cached.size_bytes = size_bytes
            cached.written_at = written_at
            cached.ttl_seconds = ttl_seconds
            cached.expires_at = expires_at
            cached.hit_count = 0
            return previous_size

        self.session.add(
            SearchCacheDB(
                key=key,
                payload=payload,
                size_bytes=size_bytes,
                written_at=written_at,
                ttl_seconds=ttl_seconds,
                expires_at=expires_at,
                hit_count=0,
            )
        )
        return 0

    async def delete(self, key: str) -> int:
        """Delete an entry. Returns the freed size in bytes (0 if absent)."""
        cached = await self.get(key)
        if not cached:
            return 0
        size = cached.size_bytes
        await self.session.delete(cached)
        return size

    async def clear(self) -> None:
        await self.session.execute(delete(SearchCacheDB))

    async def total_size(self) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(SearchCacheDB.size_bytes), 0))
        )
        return int(result.scalar_one())

    async def evict_oldest(
        self, required_bytes: int, exclude: str | None = None
    ) -> tuple[int, int]:
        """
        Delete oldest-written entries until at least ``required_bytes`` are freed.

        Returns:
            (entries evicted, bytes freed)
        """
        result = await self.session.execute(
            select(SearchCacheDB.key, SearchCacheDB.size_bytes).order_by(
                SearchCacheDB.written_at, SearchCacheDB.key
            )
        )
        freed = 0
        victims: list[str] = []
        for key, size in result.all():
            if key == exclude:
                continue
            if freed >= required_bytes:
                break
            victims.append(key)
            freed += size

        if victims:
            await self.session.execute(
                delete(SearchCacheDB).where(SearchCacheDB.key.in_(victims))
            )
            logger.debug(f"Evicted {len(victims)} persistent cache entries ({freed} bytes)")
        return len(victims), freed

    async def cleanup_expired(self, now: datetime) -> int:
        """Delete expired entries. Returns the number removed."""
        result = await self.session.execute(
            delete(SearchCacheDB).where(SearchCacheDB.expires_at < now)
        )
        deleted = result.rowcount or 0
        if deleted > 0:
            logger.debug(f"Cleaned up {deleted} expired cache entries")
        return deleted

    async def get_cache_stats(self, now: datetime) -> dict[str, object]:
        total = await self.session.execute(
            select(
                func.count(SearchCacheDB.key),
                func.coalesce(func.sum(SearchCacheDB.size_bytes), 0),
            )
        )
        total_count, total_size = total.one()

        active = await self.session.execute(
            select(
                func.count(SearchCacheDB.key),
                func.min(SearchCacheDB.written_at),
                func.max(SearchCacheDB.written_at),
            ).where(SearchCacheDB.expires_at >= now)
        )
        active_count, oldest, newest = active.one()

        return {
            "total_entries": total_count,
            "active_entries": active_count,
            "expired_entries": total_count - active_count,
            "size_bytes": int(total_size),
            "oldest_entry": oldest.isoformat() if oldest else None,
            "newest_entry": newest.isoformat() if newest else None,
        }
