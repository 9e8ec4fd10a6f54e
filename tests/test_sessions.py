"""
tests/test_sessions.py -- Unit tests for auth/sessions.py.

Coverage:
  - login writes refresh + access entries and registers the session
  - the session cap refuses login without writing anything
  - naturally expired sessions do not count against the cap
  - refresh mints a new access token and drops the old one
  - logout_one / logout_all revoke refresh tokens and CSRF bindings
  - after logout_all, access tokens stay live only until their own TTL
  - a cache outage on the liveness check propagates
"""

from __future__ import annotations

import pytest

from auth.csrf import binding_key
from auth.models import Principal
from auth.sessions import SessionManager
from auth.tokens import CredentialCodec
from cache.registry import RegistryStore, session_group
from core.errors import CacheUnavailable, TokenKind, TooManySessions

ADA = Principal(subject_id="1", email="ada@tollgate.io", display_name="Ada", role="user")
BOB = Principal(subject_id="2", email="bob@tollgate.io", display_name="Bob", role="user")


@pytest.fixture
def codec(settings) -> CredentialCodec:
    return CredentialCodec(settings)


@pytest.fixture
def sessions(codec, memory_cache) -> SessionManager:
    return SessionManager(codec, memory_cache, RegistryStore(memory_cache), max_sessions=2)


@pytest.mark.asyncio
async def test_login_registers_session(sessions, memory_cache):
    pair = await sessions.login(ADA)
    assert await memory_cache.get(pair.refresh_token) == "1"
    assert await memory_cache.get(pair.access_token) == "1"
    assert await sessions.list_sessions("1") == [pair.refresh_token]
    assert await sessions.is_live(pair.access_token)
    assert await sessions.session_count("1") == 1


@pytest.mark.asyncio
async def test_cap_refuses_login_without_writes(sessions, memory_cache):
    await sessions.login(ADA)
    await sessions.login(ADA)
    before = len(memory_cache)
    group_before = await memory_cache.get(session_group("1"))

    with pytest.raises(TooManySessions) as exc_info:
        await sessions.login(ADA)

    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "too_many_sessions"
    assert len(memory_cache) == before
    assert await memory_cache.get(session_group("1")) == group_before


@pytest.mark.asyncio
async def test_cap_is_per_subject(sessions):
    await sessions.login(ADA)
    await sessions.login(ADA)
    await sessions.login(BOB)
    assert await sessions.session_count("2") == 1


@pytest.mark.asyncio
async def test_expired_sessions_free_their_slot(codec, memory_cache, clock):
    lifetime = codec.lifetime(TokenKind.REFRESH)
    registry = RegistryStore(memory_cache, ttl_seconds=10 * lifetime)
    sessions = SessionManager(codec, memory_cache, registry, max_sessions=2)
    await sessions.login(ADA)
    await sessions.login(ADA)

    clock.advance(lifetime + 1)
    assert len(await sessions.list_sessions("1")) == 2
    assert await sessions.session_count("1") == 0
    assert await sessions.list_sessions("1") == []

    await sessions.login(ADA)
    assert await sessions.session_count("1") == 1


@pytest.mark.asyncio
async def test_refresh_replaces_access_token(sessions):
    pair = await sessions.login(ADA)
    new_access = await sessions.refresh(pair.refresh_token, pair.access_token)
    assert new_access != pair.access_token
    assert await sessions.is_live(new_access)
    assert not await sessions.is_live(pair.access_token)
    assert await sessions.is_live(pair.refresh_token)


@pytest.mark.asyncio
async def test_refresh_never_drops_another_subjects_access_token(sessions):
    ada = await sessions.login(ADA)
    bob = await sessions.login(BOB)
    await sessions.refresh(ada.refresh_token, bob.access_token)
    assert await sessions.is_live(bob.access_token)


@pytest.mark.asyncio
async def test_logout_one(sessions, memory_cache):
    first = await sessions.login(ADA)
    second = await sessions.login(ADA)
    await memory_cache.set(binding_key(first.refresh_token), "csrf-key", 60)

    await sessions.logout_one(first.refresh_token, first.access_token)

    assert not await sessions.is_live(first.refresh_token)
    assert not await sessions.is_live(first.access_token)
    assert await memory_cache.get(binding_key(first.refresh_token)) is None
    assert await sessions.list_sessions("1") == [second.refresh_token]
    assert await sessions.is_live(second.refresh_token)


@pytest.mark.asyncio
async def test_logout_all_leaves_bounded_access_window(sessions, codec, memory_cache, clock):
    first = await sessions.login(ADA)
    second = await sessions.login(ADA)
    await memory_cache.set(binding_key(second.refresh_token), "csrf-key", 60)

    assert await sessions.logout_all("1") == 2

    assert not await sessions.is_live(first.refresh_token)
    assert not await sessions.is_live(second.refresh_token)
    assert await memory_cache.get(binding_key(second.refresh_token)) is None
    assert await sessions.list_sessions("1") == []

    # Access tokens are not tracked per subject: they linger until their TTL.
    assert await sessions.is_live(first.access_token)
    clock.advance(codec.lifetime(TokenKind.ACCESS))
    assert not await sessions.is_live(first.access_token)
    assert not await sessions.is_live(second.access_token)


@pytest.mark.asyncio
async def test_logout_all_with_no_sessions(sessions):
    assert await sessions.logout_all("404") == 0


@pytest.mark.asyncio
async def test_liveness_check_fails_closed(codec, broken_cache):
    sessions = SessionManager(codec, broken_cache, RegistryStore(broken_cache))
    with pytest.raises(CacheUnavailable):
        await sessions.is_live("whatever")
    with pytest.raises(CacheUnavailable):
        await sessions.login(ADA)
