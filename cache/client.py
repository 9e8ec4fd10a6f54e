"""
cache/client.py -- Async key-value cache clients.

The rest of the app only sees the CacheClient interface: single-key
get / set / touch / delete with a TTL. There are no list, set, or transaction
primitives on purpose -- the registry in cache/registry.py builds grouped keys
on top of these four calls, so any backend that offers them is enough.

Contract:
  get(key)            -> value, or None on a miss. A miss never raises.
  set(key, value, ttl)
  touch(key, ttl)     -> True if the key existed and its TTL was reset.
  delete(key)         -> True if the key existed.
  require(key)        -> value, or raises CacheMiss.

Every backend failure (connection refused, timeout after retries, protocol
error) surfaces as CacheUnavailable, never as a miss, so callers can tell
"not found" from "cache down".

Backends:
  MemoryCacheClient -- per-process dict with expiry. Dev mode and tests.
  RedisCacheClient  -- redis.asyncio with socket timeouts and bounded retries.

Usage:
    cache = create_cache_client(get_settings())
    await cache.set("key", "value", 60)
    value = await cache.get("key")      # "value" or None
    await cache.close()
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable

import redis.asyncio as aioredis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from core.config import Settings
from core.errors import CacheMiss, CacheUnavailable

logger = logging.getLogger("tollgate.cache")


def _check_ttl(ttl_seconds: int) -> None:
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")


class CacheClient(ABC):
    """Abstract single-key cache. Inject an instance; never import a global."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def touch(self, key: str, ttl_seconds: int) -> bool: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def require(self, key: str) -> str:
        """Return the value for key, raising CacheMiss when it is absent."""
        value = await self.get(key)
        if value is None:
            raise CacheMiss(key)
        return value


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryCacheClient(CacheClient):
    """Process-local cache with lazy expiry.

    Entries are (value, expires_at) pairs checked against `clock` on every
    read. The clock is injectable so tests can advance time without sleeping.
    Every method body runs without an await, so on a single event loop each
    call is effectively atomic -- races only appear between calls, the same
    as with a real network cache.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        _check_ttl(ttl_seconds)
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def touch(self, key: str, ttl_seconds: int) -> bool:
        _check_ttl(ttl_seconds)
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        if self._live(key) is None:
            return False
        del self._data[key]
        return True

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisCacheClient(CacheClient):
    """redis.asyncio wrapper that maps every RedisError to CacheUnavailable.

    Timeouts: socket and connect timeouts both use `timeout`. Retries: up to
    `retries` attempts with exponential backoff on connection errors and
    timeouts, handled inside redis-py before the error reaches us.
    """

    def __init__(self, url: str, *, timeout: float = 1.0, retries: int = 3) -> None:
        self.url = url
        self.client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            retry=Retry(ExponentialBackoff(cap=timeout, base=0.05), retries),
            retry_on_timeout=True,
        )

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise CacheUnavailable(f"get {key!r} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        _check_ttl(ttl_seconds)
        try:
            await self.client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise CacheUnavailable(f"set {key!r} failed: {exc}") from exc

    async def touch(self, key: str, ttl_seconds: int) -> bool:
        _check_ttl(ttl_seconds)
        try:
            return bool(await self.client.expire(key, ttl_seconds))
        except RedisError as exc:
            raise CacheUnavailable(f"touch {key!r} failed: {exc}") from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except RedisError as exc:
            raise CacheUnavailable(f"delete {key!r} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as exc:
            logger.warning("Cache ping failed (%s): %s", self.url, exc)
            return False

    async def close(self) -> None:
        await self.client.aclose()


def create_cache_client(settings: Settings) -> CacheClient:
    """Pick the backend from settings.cache_url ("memory://" or a redis URL)."""
    if settings.cache_url.startswith("memory://"):
        logger.info("Using in-memory cache (not shared between processes)")
        return MemoryCacheClient()
    return RedisCacheClient(
        settings.cache_url,
        timeout=settings.cache_timeout_seconds,
        retries=settings.cache_retries,
    )
