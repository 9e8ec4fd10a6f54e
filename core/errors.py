"""
core/errors.py -- Closed error taxonomy shared by every layer.

Authorization decisions are expressed as tagged exception variants. Guards
raise them; the exception handler in api/main.py turns them into 401/403
responses by reading `status_code` and `code` off the instance. Nothing
branches on message text.

  AuthError (kind, status_code, code, message)
    SignatureInvalid   -- token malformed, wrong key, wrong algorithm
    CredentialExpired  -- token past `exp`, or its cache entry is gone
    CsrfInvalid        -- anti-forgery pair missing or hash mismatch
    CsrfExpired        -- anti-forgery cache entry missing
    TooManySessions    -- concurrent session cap reached
    AdminRequired      -- role claim is not the administrative role

  CacheError
    CacheUnavailable   -- backend failure or timeout (fail closed on auth paths)
    CacheMiss          -- key absent; internal only, callers translate it

  CredentialConfigError -- signing impossible with the configured secrets

log_error() writes the single structured error line used across the app:
timestamp, location, known/unknown classification, and the error text.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, catalog/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger("tollgate.errors")


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class AuthErrorKind(str, Enum):
    SIGNATURE_INVALID = "signature_invalid"
    CREDENTIAL_EXPIRED = "credential_expired"
    CSRF_INVALID = "csrf_invalid"
    CSRF_EXPIRED = "csrf_expired"
    TOO_MANY_SESSIONS = "too_many_sessions"
    FORBIDDEN_ROLE = "forbidden_role"


# ---------------------------------------------------------------------------
# Authorization errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for every authorization-decision failure."""

    kind: AuthErrorKind
    status_code: int = 401

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class SignatureInvalid(AuthError):
    kind = AuthErrorKind.SIGNATURE_INVALID

    def __init__(self, token_kind: TokenKind) -> None:
        self.token_kind = token_kind
        super().__init__(
            f"{token_kind.value}_token_not_valid",
            f"valid {token_kind.value} token not supplied",
        )


class CredentialExpired(AuthError):
    kind = AuthErrorKind.CREDENTIAL_EXPIRED

    def __init__(self, token_kind: TokenKind) -> None:
        self.token_kind = token_kind
        message = f"{token_kind.value} token expired"
        if token_kind is TokenKind.ACCESS:
            message += ", please refresh access token"
        super().__init__(f"{token_kind.value}_token_expired", message)


class CsrfInvalid(AuthError):
    kind = AuthErrorKind.CSRF_INVALID
    status_code = 403

    def __init__(self, anonymous: bool = False) -> None:
        self.anonymous = anonymous
        prefix = "anonym_" if anonymous else ""
        label = "anonymous csrf token" if anonymous else "csrf token"
        super().__init__(f"{prefix}csrf_token_not_valid", f"valid {label} not supplied")


class CsrfExpired(AuthError):
    kind = AuthErrorKind.CSRF_EXPIRED
    status_code = 403

    def __init__(self, anonymous: bool = False) -> None:
        self.anonymous = anonymous
        prefix = "anonym_" if anonymous else ""
        label = "anonymous csrf token" if anonymous else "csrf token"
        super().__init__(f"{prefix}csrf_token_expired", f"{label} expired, please request a new one")


class TooManySessions(AuthError):
    kind = AuthErrorKind.TOO_MANY_SESSIONS
    status_code = 403

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            "too_many_sessions",
            f"maximum of {limit} concurrent sessions reached, log out of another device first",
        )


class AdminRequired(AuthError):
    kind = AuthErrorKind.FORBIDDEN_ROLE
    status_code = 403

    def __init__(self) -> None:
        super().__init__("admin_role_needed", "admin role needed to perform this task")


# ---------------------------------------------------------------------------
# Cache errors
# ---------------------------------------------------------------------------


class CacheError(Exception):
    """Base exception for cache operations."""


class CacheUnavailable(CacheError):
    """The cache backend failed or timed out. Distinct from a miss."""


class CacheMiss(CacheError):
    """The key was not present. Never user-facing."""

    def __init__(self, key: str) -> None:
        super().__init__("cache miss")
        self.key = key


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class CredentialConfigError(RuntimeError):
    """Signing failed because of the configured secret or algorithm."""


# ---------------------------------------------------------------------------
# Structured error log
# ---------------------------------------------------------------------------


def log_error(location: str, error: BaseException, known: bool) -> None:
    """Log an error with timestamp, origin and known/unknown classification.

    Known errors are expected failure modes (cache down, bad token) and log
    at WARNING without a traceback. Unknown errors log at ERROR with one.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    classification = "known" if known else "unknown"
    if known:
        logger.warning("%s@%s[%s] %s: %s", timestamp, location, classification, type(error).__name__, error)
    else:
        logger.error(
            "%s@%s[%s] %s: %s",
            timestamp,
            location,
            classification,
            type(error).__name__,
            error,
            exc_info=error,
        )
