"""
tests/test_cache_client.py -- Unit tests for the in-memory cache backend.

The Redis backend shares the same contract; it is exercised only through
its error mapping here since no server runs in CI.
"""

from __future__ import annotations

import pytest

from cache.client import MemoryCacheClient, RedisCacheClient, create_cache_client
from core.errors import CacheMiss, CacheUnavailable


@pytest.mark.asyncio
async def test_set_then_get(memory_cache):
    await memory_cache.set("k", "v", 10)
    assert await memory_cache.get("k") == "v"


@pytest.mark.asyncio
async def test_entry_expires_after_ttl(memory_cache, clock):
    await memory_cache.set("k", "v", 10)
    clock.advance(9)
    assert await memory_cache.get("k") == "v"
    clock.advance(1)
    assert await memory_cache.get("k") is None


@pytest.mark.asyncio
async def test_touch_extends_ttl(memory_cache, clock):
    await memory_cache.set("k", "v", 10)
    clock.advance(8)
    assert await memory_cache.touch("k", 10) is True
    clock.advance(8)
    assert await memory_cache.get("k") == "v"


@pytest.mark.asyncio
async def test_touch_missing_key_returns_false(memory_cache):
    assert await memory_cache.touch("nope", 10) is False


@pytest.mark.asyncio
async def test_delete(memory_cache, clock):
    await memory_cache.set("k", "v", 10)
    assert await memory_cache.delete("k") is True
    assert await memory_cache.delete("k") is False
    await memory_cache.set("gone", "v", 1)
    clock.advance(2)
    assert await memory_cache.delete("gone") is False


@pytest.mark.asyncio
async def test_require_raises_cache_miss(memory_cache):
    with pytest.raises(CacheMiss) as exc_info:
        await memory_cache.require("absent")
    assert exc_info.value.key == "absent"


@pytest.mark.asyncio
@pytest.mark.parametrize("ttl", [0, -5])
async def test_non_positive_ttl_rejected(memory_cache, ttl):
    with pytest.raises(ValueError):
        await memory_cache.set("k", "v", ttl)


@pytest.mark.asyncio
async def test_len_counts_live_entries_only(memory_cache, clock):
    await memory_cache.set("short", "v", 1)
    await memory_cache.set("long", "v", 100)
    clock.advance(5)
    assert len(memory_cache) == 1


@pytest.mark.asyncio
async def test_redis_outage_maps_to_cache_unavailable():
    # Port 1 refuses connections immediately.
    client = RedisCacheClient("redis://127.0.0.1:1/0", timeout=0.2, retries=0)
    try:
        with pytest.raises(CacheUnavailable):
            await client.get("k")
        assert await client.ping() is False
    finally:
        await client.close()


def test_factory_picks_backend(settings):
    assert isinstance(create_cache_client(settings), MemoryCacheClient)
    redis_settings = settings.model_copy(update={"cache_url": "redis://localhost:6379/0"})
    assert isinstance(create_cache_client(redis_settings), RedisCacheClient)
