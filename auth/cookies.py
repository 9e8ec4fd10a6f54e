"""
auth/cookies.py -- Signed httpOnly cookies for the refresh token and CSRF hash.

Two cookies travel with a browser session:
  x-refresh-token  the refresh credential (authorized sessions only)
  x-csrf-token     sha256(csrf_key + csrf_token), never the token itself

Both are signed with itsdangerous.TimestampSigner keyed by COOKIE_SECRET, the
same way Starlette's SessionMiddleware signs its session cookie. A cookie
whose signature does not check out, or which is older than its max_age, reads
as absent; the guard that needed it then raises the usual 401/403.

Non-browser clients may send the refresh token in the X-Refresh-Token header
instead; that header wins over the cookie.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response
from itsdangerous import BadSignature, TimestampSigner

from core.config import Settings

logger = logging.getLogger("tollgate.auth.cookies")

CSRF_COOKIE = "x-csrf-token"
REFRESH_COOKIE = "x-refresh-token"
CSRF_HEADER = "X-CSRF-Token"
REFRESH_HEADER = "X-Refresh-Token"

_SALT = "tollgate.cookie"


class CookieJar:
    """Writes, reads and clears the signed session cookies.

    Usage:
        jar = CookieJar(get_settings())
        jar.set_csrf(response, pair.hashed, max_age=300)
        jar.set_refresh(response, tokens.refresh_token, max_age=604800)
        cookie_hash = jar.read(request, CSRF_COOKIE)
        jar.clear(response)
    """

    def __init__(self, settings: Settings) -> None:
        self._signer = TimestampSigner(settings.cookie_secret, salt=_SALT)
        self.secure = settings.secure_cookies
        self.samesite = settings.cookie_samesite
        self.refresh_max_age = settings.refresh_token_expire_seconds

    def _set(self, response: Response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            name,
            self._signer.sign(value).decode("utf-8"),
            max_age=max_age,
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )

    def set_csrf(self, response: Response, hashed: str, max_age: int) -> None:
        self._set(response, CSRF_COOKIE, hashed, max_age)

    def set_refresh(self, response: Response, refresh_token: str, max_age: int) -> None:
        self._set(response, REFRESH_COOKIE, refresh_token, max_age)

    def read(self, request: Request, name: str) -> str | None:
        """Return the verified cookie value, or None if absent, tampered or too old."""
        raw = request.cookies.get(name)
        if not raw:
            return None
        value = self.unsign(raw)
        if value is None:
            logger.info("Rejected cookie %s with bad signature", name)
        return value

    def unsign(self, raw: str) -> str | None:
        try:
            return self._signer.unsign(raw, max_age=self.refresh_max_age).decode("utf-8")
        except BadSignature:
            return None

    def clear(self, response: Response) -> None:
        for name in (CSRF_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(name, httponly=True, secure=self.secure, samesite=self.samesite)


def read_refresh_token(request: Request, jar: CookieJar) -> str | None:
    """The X-Refresh-Token header if present, else the signed refresh cookie."""
    header = request.headers.get(REFRESH_HEADER, "").strip()
    if header:
        return header
    return jar.read(request, REFRESH_COOKIE)
