"""
Memory tier and tiered cache tests
"""
import asyncio
from datetime import timedelta
from typing import Any

import pytest

from medsearch.services.cache import (
    MEMORY_TIER,
    PERSISTENT_TIER,
    CacheTier,
    MemoryCacheTier,
    TieredCache,
)
from medsearch.services.errors import CacheTierError


class DictTier(CacheTier):
    """In-memory stand-in for the persistent tier with switchable failures."""

    name = PERSISTENT_TIER

    def __init__(self, fail_init: bool = False, fail_writes: bool = False):
        self.data: dict[str, Any] = {}
        self.fail_init = fail_init
        self.fail_writes = fail_writes
        self.cleanups = 0

    async def initialize(self) -> None:
        if self.fail_init:
            raise CacheTierError("storage unavailable")

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        if self.fail_writes:
            raise CacheTierError("quota exceeded")
        self.data[key] = value

    async def delete(self, key):
        return self.data.pop(key, None) is not None

    async def clear(self):
        self.data.clear()

    async def cleanup_expired(self):
        self.cleanups += 1
        return 0

    async def get_stats(self):
        return {"active_entries": len(self.data)}


class TestMemoryCacheTier:
    """LRU and TTL behavior"""

    def test_roundtrip(self, clock):
        tier = MemoryCacheTier(clock=clock)

        async def scenario():
            await tier.set("aspirin", ["Aspirin"])
            return await tier.get("aspirin"), await tier.get("missing")

        assert asyncio.run(scenario()) == (["Aspirin"], None)

    def test_evicts_least_recently_used(self, clock):
        tier = MemoryCacheTier(max_entries=3, clock=clock)

        async def scenario():
            for key in ("a", "b", "c"):
                await tier.set(key, key)
            await tier.get("a")
            await tier.set("d", "d")

        asyncio.run(scenario())
        assert tier.keys() == ["c", "a", "d"]

    def test_overwrite_does_not_evict(self, clock):
        tier = MemoryCacheTier(max_entries=2, clock=clock)

        async def scenario():
            await tier.set("a", 1)
            await tier.set("b", 2)
            await tier.set("a", 3)
            return await tier.get("a")

        assert asyncio.run(scenario()) == 3
        assert sorted(tier.keys()) == ["a", "b"]

    def test_expired_entry_is_a_miss(self, clock):
        tier = MemoryCacheTier(default_ttl=timedelta(minutes=30), clock=clock)

        async def scenario():
            await tier.set("aspirin", ["Aspirin"])
            clock.advance(minutes=31)
            return await tier.get("aspirin")

        assert asyncio.run(scenario()) is None
        assert tier.keys() == []

    def test_cleanup_expired_removes_only_expired(self, clock):
        tier = MemoryCacheTier(clock=clock)

        async def scenario():
            await tier.set("short", 1, timedelta(minutes=1))
            await tier.set("long", 2, timedelta(days=7))
            clock.advance(minutes=5)
            return await tier.cleanup_expired()

        assert asyncio.run(scenario()) == 1
        assert tier.keys() == ["long"]


class TestTieredCache:
    """Two-level lookup, promotion and degradation"""

    def test_keys_are_normalized(self, memory_cache):
        async def scenario():
            await memory_cache.set("  Aspirin ", ["Aspirin"])
            return await memory_cache.get("ASPIRIN")

        hit = asyncio.run(scenario())
        assert hit.data == ["Aspirin"]
        assert hit.tier == MEMORY_TIER

    def test_persistent_hit_is_promoted_to_memory(self, clock):
        persistent = DictTier()
        persistent.data["lora"] = ["Loratadine"]
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        async def scenario():
            return await cache.get("lora"), await cache.get("lora")

        first, second = asyncio.run(scenario())
        assert first.tier == PERSISTENT_TIER
        assert second.tier == MEMORY_TIER
        assert second.data == ["Loratadine"]

    def test_set_writes_both_tiers(self, clock):
        persistent = DictTier()
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        asyncio.run(cache.set("aspirin", ["Aspirin"]))
        assert persistent.data == {"aspirin": ["Aspirin"]}
        assert cache.memory.keys() == ["aspirin"]

    def test_persistent_write_failure_keeps_memory_entry(self, clock):
        persistent = DictTier(fail_writes=True)
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        async def scenario():
            await cache.set("aspirin", ["Aspirin"])
            return await cache.get("aspirin")

        hit = asyncio.run(scenario())
        assert hit.tier == MEMORY_TIER
        assert persistent.data == {}

    def test_unavailable_persistent_tier_degrades_to_memory_only(self, clock):
        persistent = DictTier(fail_init=True)
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        async def scenario():
            await cache.set("aspirin", ["Aspirin"])
            return await cache.get("aspirin"), await cache.get_stats()

        hit, stats = asyncio.run(scenario())
        assert hit.tier == MEMORY_TIER
        assert cache.persistent_available is False
        assert stats[PERSISTENT_TIER] is None
        assert persistent.data == {}

    def test_memory_only_without_persistent_tier(self, memory_cache):
        async def scenario():
            await memory_cache.set("x", [1])
            return await memory_cache.get("x"), await memory_cache.get("y")

        hit, miss = asyncio.run(scenario())
        assert hit.tier == MEMORY_TIER
        assert miss is None

    def test_initialization_purges_expired_persistent_entries(self, clock):
        persistent = DictTier()
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        asyncio.run(cache.initialize())
        assert persistent.cleanups == 1
        assert cache.persistent_available is True

    def test_clear_empties_both_tiers(self, clock):
        persistent = DictTier()
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        async def scenario():
            await cache.set("a", [1])
            await cache.set("b", [2])
            await cache.clear()
            return await cache.get("a"), await cache.get("b")

        assert asyncio.run(scenario()) == (None, None)
        assert persistent.data == {}

    def test_delete_and_has(self, clock):
        persistent = DictTier()
        cache = TieredCache(MemoryCacheTier(clock=clock), persistent)

        async def scenario():
            await cache.set("a", [1])
            present = await cache.has("a")
            await cache.delete("a")
            return present, await cache.has("a")

        assert asyncio.run(scenario()) == (True, False)

    def test_cleanup_reports_both_tiers(self, clock):
        cache = TieredCache(MemoryCacheTier(clock=clock), DictTier())

        async def scenario():
            await cache.set("old", [1], timedelta(minutes=1))
            clock.advance(minutes=2)
            return await cache.cleanup_expired()

        assert asyncio.run(scenario()) == {MEMORY_TIER: 1, PERSISTENT_TIER: 0}

    def test_unsupported_eviction_policy_rejected(self):
        with pytest.raises(ValueError):
            TieredCache(eviction_policy="lfu")


class GatedTier(DictTier):
    """Persistent stand-in whose reads snapshot the value, then block until ``release``."""

    def __init__(self):
        super().__init__()
        self.reading = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, key):
        value = self.data.get(key)
        self.reading.set()
        await self.release.wait()
        return value


class TestTieredCacheConcurrency:
    """Memory hits do not wait on the persistent tier; clear wins over slow reads"""

    def test_memory_hit_served_while_persistent_read_blocked(self, clock):
        async def scenario():
            persistent = GatedTier()
            cache = TieredCache(MemoryCacheTier(clock=clock), persistent)
            await cache.set("hot", ["Aspirin"])

            cold = asyncio.create_task(cache.get("cold"))
            await asyncio.wait_for(persistent.reading.wait(), timeout=1)

            hit = await asyncio.wait_for(cache.get("hot"), timeout=0.5)
            persistent.release.set()
            return hit, await cold

        hit, cold = asyncio.run(scenario())
        assert hit.data == ["Aspirin"]
        assert hit.tier == MEMORY_TIER
        assert cold is None

    def test_clear_during_persistent_read_drops_the_value(self, clock):
        async def scenario():
            persistent = GatedTier()
            persistent.data["lora"] = ["Loratadine"]
            cache = TieredCache(MemoryCacheTier(clock=clock), persistent)
            await cache.initialize()

            pending = asyncio.create_task(cache.get("lora"))
            await asyncio.wait_for(persistent.reading.wait(), timeout=1)

            await cache.clear()
            persistent.release.set()

            hit = await pending
            return hit, cache.memory.keys()

        hit, memory_keys = asyncio.run(scenario())
        assert hit is None
        assert memory_keys == []
