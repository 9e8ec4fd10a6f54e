"""
tests/test_query_cache.py -- Unit tests for cache/queries.py.

The query cache only accelerates reads: every failure must read as a miss.
"""

from __future__ import annotations

import pytest

from cache.queries import QueryCache, query_key
from cache.registry import RegistryStore, query_group


@pytest.fixture
def queries(memory_cache) -> QueryCache:
    return QueryCache(memory_cache, RegistryStore(memory_cache), ttl_seconds=60)


def test_query_key_ignores_param_order():
    assert query_key("product", {"a": 1, "b": 2}) == query_key("product", {"b": 2, "a": 1})
    assert query_key("product", {"a": 1}) != query_key("product", {"a": 2})
    assert query_key("product", {}).startswith("product:query:")


@pytest.mark.asyncio
async def test_put_get_and_group_registration(queries, memory_cache):
    key = query_key("product", {"page": 0})
    await queries.put("product", key, {"items": [1, 2]})
    assert await queries.get(key) == {"items": [1, 2]}
    assert key in await queries.registry.list_group(query_group("product"))


@pytest.mark.asyncio
async def test_hit_prolongs_entry(queries, clock):
    await queries.put(None, "user:1", {"id": 1}, ttl_seconds=10)
    clock.advance(8)
    assert await queries.get("user:1", ttl_seconds=10) == {"id": 1}
    clock.advance(8)
    assert await queries.get("user:1") == {"id": 1}


@pytest.mark.asyncio
async def test_invalidate_drops_every_registered_query(queries):
    first = query_key("product", {"page": 0})
    second = query_key("product", {"page": 1})
    await queries.put("product", first, [1])
    await queries.put("product", second, [2])
    await queries.put(None, "product:record:ABC-123", {"code": "ABC-123"})

    await queries.invalidate("product")

    assert await queries.get(first) is None
    assert await queries.get(second) is None
    # Record entries are not group members and are dropped individually.
    assert await queries.get("product:record:ABC-123") == {"code": "ABC-123"}
    await queries.drop("product:record:ABC-123")
    assert await queries.get("product:record:ABC-123") is None


@pytest.mark.asyncio
async def test_corrupt_payload_reads_as_miss_and_is_dropped(queries, memory_cache):
    await memory_cache.set("product:query:x", "{not json", 60)
    assert await queries.get("product:query:x") is None
    assert await memory_cache.get("product:query:x") is None


@pytest.mark.asyncio
async def test_outage_fails_open(broken_cache):
    queries = QueryCache(broken_cache, RegistryStore(broken_cache))
    assert await queries.get("k") is None
    await queries.put("product", "k", {"a": 1})
    await queries.invalidate("product")
    await queries.drop("k")


@pytest.mark.asyncio
async def test_hits_keep_group_alive_for_invalidation(memory_cache, clock):
    day = 24 * 60 * 60
    registry = RegistryStore(memory_cache, ttl_seconds=7 * day)
    queries = QueryCache(memory_cache, registry, ttl_seconds=7 * day)
    key = query_key("product", {"page": 0})
    await queries.put("product", key, {"items": ["old"]})

    # Each hit prolongs the entry past the group's original expiry.
    clock.advance(6 * day)
    assert await queries.get(key, "product") == {"items": ["old"]}
    clock.advance(2 * day)
    assert await queries.get(key, "product") == {"items": ["old"]}

    await queries.invalidate("product")
    assert await queries.get(key, "product") is None


@pytest.mark.asyncio
async def test_hit_reregisters_key_into_lost_group(queries, memory_cache):
    key = query_key("product", {"page": 3})
    await queries.put("product", key, [1])
    await memory_cache.delete(query_group("product"))

    assert await queries.get(key, "product") == [1]
    assert await queries.registry.list_group(query_group("product")) == [key]
