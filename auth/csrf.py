"""
auth/csrf.py -- Double-submit anti-forgery handshake backed by the cache.

Flow:
  1. GET /auth/token issues an anonymous pair. The server keeps
         csrf:<csrf_token> -> csrf_key            (TTL: a few minutes)
     The client gets csrf_token in the body and sha256(csrf_key + csrf_token)
     in a signed httpOnly cookie.
  2. Every state-changing anonymous request (login, register) sends the token
     back in X-CSRF-Token. check_anonymous() recomputes the hash from the
     cached key and compares it with the cookie.
  3. On login the entry is promoted: the key moves to
         csrf:<refresh_token> -> csrf_key         (TTL: refresh lifetime)
     and the anonymous entry is deleted. The cookie hash does not change, so
     the client keeps the same cookie and header value.
  4. Authorized requests go through check_authorized(), which looks the key
     up by the refresh token instead and also requires the refresh token to
     verify under the codec.

An attacker on another origin can make the browser send the cookie but cannot
read csrf_token, and cannot derive it from the hash without the server-held
key.

Errors:
  missing header/cookie, or hash mismatch  -> CsrfInvalid   (403)
  cache entry missing                      -> CsrfExpired   (403)
  cache outage                             -> CacheUnavailable propagates
The "never existed" and "expired" cases are indistinguishable from the cache,
so both read as CsrfExpired once the request is structurally complete.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

from auth.models import CsrfPair, TokenPayload
from auth.tokens import CredentialCodec
from cache.client import CacheClient
from core.errors import CacheMiss, CacheUnavailable, CsrfExpired, CsrfInvalid, SignatureInvalid, TokenKind, log_error

logger = logging.getLogger("tollgate.auth.csrf")

_DEFAULT_ANONYMOUS_TTL = 5 * 60


def binding_key(token: str) -> str:
    """Cache key holding the CSRF key bound to an anonymous or refresh token."""
    return f"csrf:{token}"


def hash_csrf(csrf_key: str, csrf_token: str) -> str:
    """sha256(csrf_key || csrf_token) as hex -- the value stored in the cookie."""
    return hashlib.sha256(f"{csrf_key}{csrf_token}".encode("utf-8")).hexdigest()


def _new_pair() -> CsrfPair:
    csrf_key = secrets.token_hex(16)
    csrf_token = secrets.token_hex(32)
    return CsrfPair(csrf_token=csrf_token, csrf_key=csrf_key, hashed=hash_csrf(csrf_key, csrf_token))


class CsrfHandshake:
    """Issues, checks, promotes and rotates anti-forgery pairs.

    Usage:
        handshake = CsrfHandshake(cache, codec, anonymous_ttl=300)
        pair = await handshake.issue_anonymous()
        await handshake.check_anonymous(header_token, cookie_hash)
        await handshake.promote(header_token, refresh_token)
        await handshake.check_authorized(refresh_token, header_token, cookie_hash)
    """

    def __init__(self, cache: CacheClient, codec: CredentialCodec, anonymous_ttl: int = _DEFAULT_ANONYMOUS_TTL) -> None:
        self.cache = cache
        self.codec = codec
        self.anonymous_ttl = anonymous_ttl

    @property
    def authorized_ttl(self) -> int:
        return self.codec.lifetime(TokenKind.REFRESH)

    async def issue_anonymous(self) -> CsrfPair:
        """Create a fresh pair and cache its key under the token."""
        pair = _new_pair()
        await self.cache.set(binding_key(pair.csrf_token), pair.csrf_key, self.anonymous_ttl)
        return pair

    async def check_anonymous(self, csrf_token: str | None, cookie_hash: str | None) -> None:
        """Validate an anonymous header/cookie pair and extend its TTL."""
        if not csrf_token or not cookie_hash:
            raise CsrfInvalid(anonymous=True)
        csrf_key = await self._bound_key(csrf_token, anonymous=True)
        if not hmac.compare_digest(hash_csrf(csrf_key, csrf_token), cookie_hash):
            raise CsrfInvalid(anonymous=True)
        await self._touch(binding_key(csrf_token), self.anonymous_ttl, "check_anonymous")

    async def check_authorized(
        self,
        refresh_token: str | None,
        csrf_token: str | None,
        cookie_hash: str | None,
    ) -> TokenPayload:
        """Validate a refresh-bound header/cookie pair; return the refresh payload.

        The refresh token must verify on its own (CredentialExpired or
        SignatureInvalid for the refresh kind otherwise).
        """
        if not csrf_token or not cookie_hash:
            raise CsrfInvalid()
        if not refresh_token:
            raise SignatureInvalid(TokenKind.REFRESH)
        payload = self.codec.verify(TokenKind.REFRESH, refresh_token)
        csrf_key = await self._bound_key(refresh_token, anonymous=False)
        if not hmac.compare_digest(hash_csrf(csrf_key, csrf_token), cookie_hash):
            raise CsrfInvalid()
        await self._touch(binding_key(refresh_token), self.authorized_ttl, "check_authorized")
        return payload

    async def promote(self, csrf_token: str, refresh_token: str) -> None:
        """Rebind an anonymous pair to a freshly issued refresh token.

        Raises CsrfExpired(anonymous=True) if the anonymous entry vanished
        between the guard and this call.
        """
        csrf_key = await self._bound_key(csrf_token, anonymous=True)
        await self.cache.set(binding_key(refresh_token), csrf_key, self.authorized_ttl)
        await self.cache.delete(binding_key(csrf_token))

    async def rotate(self, refresh_token: str) -> CsrfPair:
        """Replace the pair bound to refresh_token with a brand-new one."""
        pair = _new_pair()
        await self.cache.set(binding_key(refresh_token), pair.csrf_key, self.authorized_ttl)
        return pair

    async def revoke(self, token: str) -> None:
        """Drop the binding for an anonymous or refresh token, best effort."""
        try:
            await self.cache.delete(binding_key(token))
        except CacheUnavailable as exc:
            log_error("csrf revoke", exc, known=True)

    async def _bound_key(self, token: str, anonymous: bool) -> str:
        """The CSRF key bound to token; a miss becomes CsrfExpired."""
        try:
            return await self.cache.require(binding_key(token))
        except CacheMiss:
            raise CsrfExpired(anonymous=anonymous)

    async def _touch(self, key: str, ttl: int, location: str) -> None:
        try:
            await self.cache.touch(key, ttl)
        except CacheUnavailable as exc:
            log_error(f"{location} touch", exc, known=True)
