"""
tests/test_csrf.py -- Unit tests for the double-submit handshake in auth/csrf.py.

Coverage:
  - the cookie value is sha256(csrf_key + csrf_token)
  - anonymous check: valid, wrong hash (403), expired (403), missing input
  - promotion moves the key from the anonymous token to the refresh token
  - authorized check, including refresh-token failures
  - rotation invalidates the previous hash
"""

from __future__ import annotations

import hashlib

import pytest

from auth.csrf import CsrfHandshake, binding_key, hash_csrf
from auth.models import Principal
from auth.tokens import CredentialCodec
from core.errors import CacheUnavailable, CredentialExpired, CsrfExpired, CsrfInvalid, SignatureInvalid, TokenKind

ADA = Principal(subject_id="1", email="ada@tollgate.io", display_name="Ada", role="user")


@pytest.fixture
def codec(settings) -> CredentialCodec:
    return CredentialCodec(settings)


@pytest.fixture
def handshake(memory_cache, codec) -> CsrfHandshake:
    return CsrfHandshake(memory_cache, codec, anonymous_ttl=300)


def test_hash_is_sha256_of_key_then_token():
    assert hash_csrf("k", "t") == hashlib.sha256(b"kt").hexdigest()


@pytest.mark.asyncio
async def test_issue_anonymous_caches_key_under_token(handshake, memory_cache):
    pair = await handshake.issue_anonymous()
    assert len(pair.csrf_token) == 64
    assert len(pair.csrf_key) == 32
    assert pair.hashed == hash_csrf(pair.csrf_key, pair.csrf_token)
    assert await memory_cache.get(binding_key(pair.csrf_token)) == pair.csrf_key


@pytest.mark.asyncio
async def test_check_anonymous_accepts_matching_pair(handshake):
    pair = await handshake.issue_anonymous()
    await handshake.check_anonymous(pair.csrf_token, pair.hashed)


@pytest.mark.asyncio
async def test_check_anonymous_rejects_wrong_hash(handshake):
    pair = await handshake.issue_anonymous()
    with pytest.raises(CsrfInvalid) as exc_info:
        await handshake.check_anonymous(pair.csrf_token, hash_csrf("other-key", pair.csrf_token))
    assert exc_info.value.status_code == 403
    assert exc_info.value.code == "anonym_csrf_token_not_valid"


@pytest.mark.asyncio
@pytest.mark.parametrize("token,cookie", [(None, "h"), ("t", None), ("", "")])
async def test_check_anonymous_rejects_missing_input(handshake, token, cookie):
    with pytest.raises(CsrfInvalid):
        await handshake.check_anonymous(token, cookie)


@pytest.mark.asyncio
async def test_check_anonymous_expired(handshake, clock):
    pair = await handshake.issue_anonymous()
    clock.advance(301)
    with pytest.raises(CsrfExpired) as exc_info:
        await handshake.check_anonymous(pair.csrf_token, pair.hashed)
    assert exc_info.value.code == "anonym_csrf_token_expired"


@pytest.mark.asyncio
async def test_check_anonymous_extends_ttl(handshake, clock):
    pair = await handshake.issue_anonymous()
    clock.advance(200)
    await handshake.check_anonymous(pair.csrf_token, pair.hashed)
    clock.advance(200)
    await handshake.check_anonymous(pair.csrf_token, pair.hashed)


@pytest.mark.asyncio
async def test_promote_rebinds_to_refresh_token(handshake, codec, memory_cache):
    pair = await handshake.issue_anonymous()
    refresh = codec.sign(TokenKind.REFRESH, ADA)

    await handshake.promote(pair.csrf_token, refresh)

    assert await memory_cache.get(binding_key(pair.csrf_token)) is None
    assert await memory_cache.get(binding_key(refresh)) == pair.csrf_key
    payload = await handshake.check_authorized(refresh, pair.csrf_token, pair.hashed)
    assert payload.subject_id == "1"
    # The anonymous binding is gone, so the same pair no longer passes anonymously.
    with pytest.raises(CsrfExpired):
        await handshake.check_anonymous(pair.csrf_token, pair.hashed)


@pytest.mark.asyncio
async def test_promote_after_expiry(handshake, codec, clock):
    pair = await handshake.issue_anonymous()
    clock.advance(301)
    with pytest.raises(CsrfExpired):
        await handshake.promote(pair.csrf_token, codec.sign(TokenKind.REFRESH, ADA))


@pytest.mark.asyncio
async def test_check_authorized_failures(handshake, codec, settings):
    pair = await handshake.issue_anonymous()
    refresh = codec.sign(TokenKind.REFRESH, ADA)
    await handshake.promote(pair.csrf_token, refresh)

    with pytest.raises(CsrfInvalid) as exc_info:
        await handshake.check_authorized(refresh, pair.csrf_token, "0" * 64)
    assert exc_info.value.code == "csrf_token_not_valid"

    with pytest.raises(CsrfInvalid):
        await handshake.check_authorized(refresh, None, pair.hashed)

    with pytest.raises(SignatureInvalid) as sig_info:
        await handshake.check_authorized(None, pair.csrf_token, pair.hashed)
    assert sig_info.value.token_kind is TokenKind.REFRESH

    access = codec.sign(TokenKind.ACCESS, ADA)
    with pytest.raises(SignatureInvalid):
        await handshake.check_authorized(access, pair.csrf_token, pair.hashed)

    unbound = codec.sign(TokenKind.REFRESH, ADA)
    with pytest.raises(CsrfExpired) as expired_info:
        await handshake.check_authorized(unbound, pair.csrf_token, pair.hashed)
    assert expired_info.value.code == "csrf_token_expired"


@pytest.mark.asyncio
async def test_check_authorized_expired_refresh(memory_cache, settings):
    past = CredentialCodec(settings, clock=lambda: 0)
    handshake = CsrfHandshake(memory_cache, CredentialCodec(settings))
    refresh = past.sign(TokenKind.REFRESH, ADA)
    with pytest.raises(CredentialExpired):
        await handshake.check_authorized(refresh, "t", "h")


@pytest.mark.asyncio
async def test_rotate_replaces_pair(handshake, codec):
    first = await handshake.issue_anonymous()
    refresh = codec.sign(TokenKind.REFRESH, ADA)
    await handshake.promote(first.csrf_token, refresh)

    second = await handshake.rotate(refresh)

    assert second.csrf_token != first.csrf_token
    await handshake.check_authorized(refresh, second.csrf_token, second.hashed)
    with pytest.raises(CsrfInvalid):
        await handshake.check_authorized(refresh, first.csrf_token, first.hashed)


@pytest.mark.asyncio
async def test_revoke(handshake, memory_cache):
    pair = await handshake.issue_anonymous()
    await handshake.revoke(pair.csrf_token)
    assert await memory_cache.get(binding_key(pair.csrf_token)) is None


@pytest.mark.asyncio
async def test_outage_propagates(broken_cache, codec):
    handshake = CsrfHandshake(broken_cache, codec)
    with pytest.raises(CacheUnavailable):
        await handshake.issue_anonymous()
    with pytest.raises(CacheUnavailable):
        await handshake.check_anonymous("t", "h")
    await handshake.revoke("t")
