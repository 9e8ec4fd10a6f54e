"""
cache/queries.py -- Read-through cache for query results.

List endpoints cache their serialized result under a key derived from the
query parameters and register that key into the resource's registry group
("product:queries"). Any mutation of the resource invalidates the whole group,
so a stale listing is never served after a write that the cache heard about.

Fail open: this cache only accelerates reads. A cache outage or a corrupt
payload is logged and reported as a miss; the caller falls back to the
database. Nothing here raises CacheUnavailable.

Usage:
    key = query_key("product", {"page": 0, "limit": 10})
    cached = await queries.get(key, "product")
    if cached is None:
        cached = load_from_db()
        await queries.put("product", key, cached)
    ...
    await queries.invalidate("product")   # after create/update/delete
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from cache.client import CacheClient
from cache.registry import RegistryStore, make_cache_key, query_group
from core.errors import CacheUnavailable, log_error

logger = logging.getLogger("tollgate.cache.queries")

_DEFAULT_TTL = 7 * 24 * 60 * 60


def query_key(entity: str, params: dict[str, Any]) -> str:
    """Deterministic cache key for a query: entity + SHA-256 of canonical JSON.

    Key order and whitespace do not matter; {"a": 1, "b": 2} and
    {"b": 2, "a": 1} map to the same key.
    """
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return make_cache_key(entity, "query", digest)


class QueryCache:
    def __init__(self, cache: CacheClient, registry: RegistryStore, ttl_seconds: int = _DEFAULT_TTL) -> None:
        self.cache = cache
        self.registry = registry
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str, entity: str | None = None, ttl_seconds: int | None = None) -> Any | None:
        """Return the decoded payload for key, or None on miss/outage/corruption.

        A hit prolongs the entry by ttl_seconds (default: the cache's TTL).
        For a grouped entry (entity given) the hit also re-registers the key
        into the entity's group, which refreshes the group's TTL, so the
        group always outlives the entries it has to invalidate.
        """
        try:
            raw = await self.cache.get(key)
        except CacheUnavailable as exc:
            log_error(f"query cache get {key}", exc, known=True)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            log_error(f"query cache decode {key}", exc, known=True)
            await self.drop(key)
            return None
        try:
            await self.cache.touch(key, ttl_seconds or self.ttl_seconds)
            if entity is not None:
                await self.registry.register_member(query_group(entity), key)
        except CacheUnavailable as exc:
            log_error(f"query cache touch {key}", exc, known=True)
        return payload

    async def put(self, entity: str | None, key: str, payload: Any, ttl_seconds: int | None = None) -> None:
        """Store payload under key and register key into the entity's group.

        Pass entity=None for single-record entries that are dropped
        individually rather than through the group.
        """
        try:
            await self.cache.set(key, json.dumps(payload, default=str), ttl_seconds or self.ttl_seconds)
            if entity is not None:
                await self.registry.register_member(query_group(entity), key)
        except CacheUnavailable as exc:
            log_error(f"query cache put {key}", exc, known=True)

    async def invalidate(self, entity: str) -> None:
        """Drop every cached query registered for entity."""
        try:
            await self.registry.invalidate_group(query_group(entity))
        except CacheUnavailable as exc:
            log_error(f"query cache invalidate {entity}", exc, known=True)

    async def drop(self, key: str) -> None:
        """Delete a single cached entry, best effort."""
        try:
            await self.cache.delete(key)
        except CacheUnavailable as exc:
            log_error(f"query cache drop {key}", exc, known=True)
