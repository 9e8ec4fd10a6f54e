"""
auth/dependencies.py -- FastAPI Depends() guards for authorization.

Every guard reads its collaborators from request.app.state (wired in the
lifespan in api/main.py) and either returns the verified credential or raises
an AuthError subclass. The AuthError handler in api/main.py turns that into
the JSON error envelope; guards never build responses themselves.

  require_access_token     Authorization: Bearer <access>, verified + live
  require_refresh_token    X-Refresh-Token header or signed cookie, verified + live
  require_admin            access guard + role claim == "admin"
  require_anonymous_csrf   X-CSRF-Token + signed cookie against the anonymous binding
  require_authorized_csrf  X-CSRF-Token + signed cookie against the refresh binding

A valid signature alone is not enough: the token's cache entry must still
exist. A cache outage while checking liveness propagates as CacheUnavailable
and becomes a 503, so no request is authorized on a guess.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from auth.cookies import CSRF_COOKIE, CSRF_HEADER, CookieJar, read_refresh_token
from auth.csrf import CsrfHandshake
from auth.models import TokenPayload
from auth.sessions import SessionManager
from auth.tokens import CredentialCodec
from core.errors import AdminRequired, CredentialExpired, SignatureInvalid, TokenKind

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Credential:
    """A raw token together with its verified payload."""

    token: str
    payload: TokenPayload


def bearer_token(request: Request) -> str | None:
    """The raw Authorization bearer token, unverified."""
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[7:].strip() or None


async def _verify_live(request: Request, kind: TokenKind, token: str | None) -> Credential:
    if not token:
        raise SignatureInvalid(kind)
    codec: CredentialCodec = request.app.state.codec
    sessions: SessionManager = request.app.state.sessions
    payload = codec.verify(kind, token)
    if not await sessions.is_live(token):
        raise CredentialExpired(kind)
    return Credential(token=token, payload=payload)


async def require_access_token(request: Request) -> Credential:
    """Require a verified, live access token in the Authorization header."""
    return await _verify_live(request, TokenKind.ACCESS, bearer_token(request))


async def require_refresh_token(request: Request) -> Credential:
    """Require a verified, live refresh token from header or cookie.

    A refresh token revoked by logout still verifies, but its cache entry is
    gone, so it fails with 401 refresh_token_expired.
    """
    jar: CookieJar = request.app.state.cookies
    return await _verify_live(request, TokenKind.REFRESH, read_refresh_token(request, jar))


async def require_admin(credential: Credential = Depends(require_access_token)) -> Credential:
    """Require the administrative role on a valid access token."""
    if credential.payload.role != ADMIN_ROLE:
        raise AdminRequired()
    return credential


async def require_anonymous_csrf(request: Request) -> str:
    """Validate the anonymous anti-forgery pair; return the CSRF token."""
    handshake: CsrfHandshake = request.app.state.handshake
    jar: CookieJar = request.app.state.cookies
    csrf_token = request.headers.get(CSRF_HEADER)
    await handshake.check_anonymous(csrf_token, jar.read(request, CSRF_COOKIE))
    return csrf_token


async def require_authorized_csrf(request: Request) -> Credential:
    """Validate the anti-forgery pair bound to the caller's refresh token.

    Returns the refresh credential the pair is bound to.
    """
    handshake: CsrfHandshake = request.app.state.handshake
    jar: CookieJar = request.app.state.cookies
    refresh_token = read_refresh_token(request, jar)
    payload = await handshake.check_authorized(
        refresh_token,
        request.headers.get(CSRF_HEADER),
        jar.read(request, CSRF_COOKIE),
    )
    return Credential(token=refresh_token, payload=payload)
