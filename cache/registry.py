"""
cache/registry.py -- Grouped keys emulated on top of a single-key cache.

A registry group is one cache entry whose value is a JSON array of member
strings (other cache keys, or token strings that are themselves cache keys).
Groups let us do two things the cache cannot do natively:

  - enumerate a user's live sessions   group "session:{subject_id}"
  - drop every cached query for a type group "{entity}:queries"

Every operation is read-modify-write on the JSON blob:

    register_member   read list (miss -> []), append if absent, write back
    erase_member      read list, filter out member, write back
    invalidate_group  read list, delete each member key, delete the group key

Consistency: NOT atomic. Two concurrent register_member calls on the same
group can both read the same snapshot and one append is lost; members
registered while invalidate_group is running may survive it. Both are
accepted -- the groups accelerate reads and do session bookkeeping, while the
relational store and token signatures stay authoritative. No lock is taken
here, and none should be added without a backend that offers compare-and-set.

Failure policy: list_group never raises (a cache outage reads as an empty
group). Member deletion inside invalidate_group is best effort -- errors are
logged and the loop continues. Writes of the group list itself propagate
CacheUnavailable so callers on authorization paths can fail closed.
"""

from __future__ import annotations

import json
import logging

from cache.client import CacheClient
from core.errors import CacheUnavailable, log_error

logger = logging.getLogger("tollgate.cache.registry")

# Seven days -- as long as the longest-lived member (a refresh token).
DEFAULT_GROUP_TTL = 7 * 24 * 60 * 60


def session_group(subject_id: str) -> str:
    """Group holding every live refresh token of one principal."""
    return f"session:{subject_id}"


def query_group(entity: str) -> str:
    """Group holding every cached query-result key for one resource type."""
    return f"{entity}:queries"


def make_cache_key(query_key: str, *identifiers: str) -> str:
    """Namespace a cache key: make_cache_key("product", "record", "ABC-123") -> "product:record:ABC-123"."""
    return ":".join([query_key, *identifiers])


class RegistryStore:
    """Named groups of member strings stored as JSON arrays in the cache.

    Usage:
        registry = RegistryStore(cache)
        await registry.register_member("session:42", refresh_token)
        tokens = await registry.list_group("session:42")
        await registry.invalidate_group("session:42")
    """

    def __init__(self, cache: CacheClient, ttl_seconds: int = DEFAULT_GROUP_TTL) -> None:
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def _read(self, name: str) -> list[str]:
        """Return the member list, [] on a miss or a corrupt entry.

        Raises CacheUnavailable; the public methods decide whether to swallow it.
        """
        raw = await self.cache.get(name)
        if raw is None:
            return []
        try:
            members = json.loads(raw)
        except ValueError:
            logger.warning("Registry group %r holds invalid JSON; treating as empty", name)
            return []
        if not isinstance(members, list):
            logger.warning("Registry group %r is not a list; treating as empty", name)
            return []
        return [m for m in members if isinstance(m, str)]

    async def list_group(self, name: str) -> list[str]:
        """Return the group's members. Never raises; outage reads as empty."""
        try:
            return await self._read(name)
        except CacheUnavailable as exc:
            log_error(f"registry list {name}", exc, known=True)
            return []

    async def register_member(self, name: str, member: str) -> None:
        """Append member to the group if absent and rewrite it with a fresh TTL."""
        members = await self._read(name)
        if member in members:
            # Refresh the TTL so an active group never ages out under its members.
            await self.cache.touch(name, self.ttl_seconds)
            return
        members.append(member)
        await self.cache.set(name, json.dumps(members), self.ttl_seconds)

    async def erase_member(self, name: str, member: str) -> None:
        """Remove member from the group. No-op when the member is absent."""
        members = await self._read(name)
        if member not in members:
            return
        remaining = [m for m in members if m != member]
        await self.cache.set(name, json.dumps(remaining), self.ttl_seconds)

    async def invalidate_group(self, name: str) -> list[str]:
        """Delete every member key, then the group key. Returns the members read.

        Member deletes are best effort; a failure on one member is logged and
        the rest are still attempted. The members list is a snapshot, so keys
        registered after the read are not touched.
        """
        members = await self._read(name)
        for member in members:
            try:
                await self.cache.delete(member)
            except CacheUnavailable as exc:
                log_error(f"registry invalidate {name} member", exc, known=True)
        await self.cache.delete(name)
        logger.info("Invalidated registry group %r (%d members)", name, len(members))
        return members
