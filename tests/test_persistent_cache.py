"""
Persistent cache tier tests against a throwaway SQLite file
"""
import asyncio
from datetime import timedelta

import pytest

from conftest import build_catalog
from medsearch.services.errors import CacheTierError
from medsearch.services.persistent_cache import PersistentCacheTier, dump_medications


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"


def make_tier(database_url, clock, **kwargs) -> PersistentCacheTier:
    return PersistentCacheTier(database_url, clock=clock, **kwargs)


def payload_size(medications) -> int:
    return len(dump_medications(medications).encode("utf-8"))


class TestPersistentCacheTier:
    """Storage, expiry and the byte budget"""

    def test_roundtrip_restores_medications(self, database_url, clock):
        medications = build_catalog(["Ibuprofen (Advil)", "Aspirin"])
        tier = make_tier(database_url, clock)

        async def scenario():
            await tier.initialize()
            await tier.set("ibu", medications)
            value = await tier.get("ibu")
            await tier.close()
            return value

        restored = asyncio.run(scenario())
        assert restored == medications
        assert restored[0].brand_names == ["Advil"]

    def test_survives_reopen(self, database_url, clock):
        medications = build_catalog(["Aspirin"])

        async def write():
            tier = make_tier(database_url, clock)
            await tier.initialize()
            await tier.set("aspirin", medications)
            await tier.close()

        async def read():
            tier = make_tier(database_url, clock)
            await tier.initialize()
            value = await tier.get("aspirin")
            await tier.close()
            return value

        asyncio.run(write())
        assert asyncio.run(read()) == medications

    def test_expired_entry_is_deleted_on_access(self, database_url, clock):
        tier = make_tier(database_url, clock, default_ttl=timedelta(hours=24))

        async def scenario():
            await tier.initialize()
            await tier.set("aspirin", build_catalog(["Aspirin"]))
            clock.advance(hours=25)
            value = await tier.get("aspirin")
            stats = await tier.get_stats()
            await tier.close()
            return value, stats

        value, stats = asyncio.run(scenario())
        assert value is None
        assert stats["total_entries"] == 0
        assert stats["expired"] == 1

    def test_oldest_entries_evicted_to_fit_quota(self, database_url, clock):
        entry = build_catalog(["Aspirin"])
        size = payload_size(entry)
        tier = make_tier(database_url, clock, max_size_bytes=size * 2)

        async def scenario():
            await tier.initialize()
            for key in ("first", "second", "third"):
                await tier.set(key, entry)
                clock.advance(seconds=1)
            values = [await tier.get(key) for key in ("first", "second", "third")]
            stats = await tier.get_stats()
            await tier.close()
            return values, stats

        values, stats = asyncio.run(scenario())
        assert values == [None, entry, entry]
        assert stats["size_bytes"] == size * 2
        assert stats["evictions"] == 1

    def test_replacing_an_entry_does_not_evict_others(self, database_url, clock):
        entry = build_catalog(["Aspirin"])
        tier = make_tier(database_url, clock, max_size_bytes=payload_size(entry) * 2)

        async def scenario():
            await tier.initialize()
            await tier.set("a", entry)
            clock.advance(seconds=1)
            await tier.set("b", entry)
            clock.advance(seconds=1)
            await tier.set("b", entry)
            values = [await tier.get("a"), await tier.get("b")]
            await tier.close()
            return values

        assert asyncio.run(scenario()) == [entry, entry]

    def test_entry_larger_than_quota_is_rejected(self, database_url, clock):
        tier = make_tier(database_url, clock, max_size_bytes=10)

        async def scenario():
            await tier.initialize()
            try:
                await tier.set("aspirin", build_catalog(["Aspirin"]))
            finally:
                await tier.close()

        with pytest.raises(CacheTierError):
            asyncio.run(scenario())

    def test_cleanup_expired_counts_removed(self, database_url, clock):
        tier = make_tier(database_url, clock)
        entry = build_catalog(["Aspirin"])

        async def scenario():
            await tier.initialize()
            await tier.set("short", entry, timedelta(minutes=1))
            await tier.set("long", entry, timedelta(days=7))
            clock.advance(minutes=5)
            removed = await tier.cleanup_expired()
            remaining = await tier.get("long")
            await tier.close()
            return removed, remaining

        removed, remaining = asyncio.run(scenario())
        assert removed == 1
        assert remaining == entry

    def test_clear_and_delete(self, database_url, clock):
        tier = make_tier(database_url, clock)
        entry = build_catalog(["Aspirin"])

        async def scenario():
            await tier.initialize()
            await tier.set("a", entry)
            await tier.set("b", entry)
            deleted = await tier.delete("a")
            missing = await tier.delete("a")
            await tier.clear()
            stats = await tier.get_stats()
            await tier.close()
            return deleted, missing, stats

        deleted, missing, stats = asyncio.run(scenario())
        assert deleted is True
        assert missing is False
        assert stats["total_entries"] == 0
