"""
auth/tokens.py -- Credential codec and password hashing.

Security design decisions:
  JWT: python-jose. Two token kinds with separate secrets AND separate
       algorithms (HS256 access / HS512 refresh by default). verify() only
       accepts the algorithm configured for the requested kind, so an access
       token never verifies as a refresh token even if a client swaps them,
       and a leaked access secret cannot mint refresh tokens [S1].

       Every signed payload carries a nonce: SHA-256 over 32 fresh random
       bytes. Two tokens for the same principal issued in the same second
       are still distinct strings -- they double as cache keys, so this is
       what keeps one session's revocation from hitting another.

       verify() raises CredentialExpired or SignatureInvalid. Route guards
       turn those into 401 "expired" vs 401 "not valid" responses.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an email is registered [C1].

Layer rule: no imports from api/, cache/, or catalog/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from typing import TYPE_CHECKING, Callable

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JOSEError

from auth.models import Principal, TokenPayload
from core.config import Settings
from core.errors import CredentialConfigError, CredentialExpired, SignatureInvalid, TokenKind

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("tollgate.auth")

__all__ = [
    "CredentialCodec",
    "TokenKind",
    "authenticate_user",
    "hash_password",
    "verify_password",
]

_REQUIRED_CLAIMS = ("sub", "email", "name", "role", "iat", "exp", "nonce")


# ---------------------------------------------------------------------------
# Credential codec
# ---------------------------------------------------------------------------


class CredentialCodec:
    """Signs, verifies and decodes access and refresh credentials.

    Usage:
        codec = CredentialCodec(get_settings())
        token = codec.sign(TokenKind.ACCESS, principal)
        payload = codec.verify(TokenKind.ACCESS, token)   # raises on failure
        payload = codec.decode(token)                     # no verification
    """

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._config: dict[TokenKind, tuple[str, str, int]] = {
            TokenKind.ACCESS: (
                settings.access_token_secret,
                settings.access_token_algorithm,
                settings.access_token_expire_seconds,
            ),
            TokenKind.REFRESH: (
                settings.refresh_token_secret,
                settings.refresh_token_algorithm,
                settings.refresh_token_expire_seconds,
            ),
        }

    def lifetime(self, kind: TokenKind) -> int:
        """Token lifetime in seconds; also the TTL of its cache entry."""
        return self._config[kind][2]

    def sign(self, kind: TokenKind, principal: Principal) -> str:
        """Return a signed token for principal with a fresh nonce.

        Raises CredentialConfigError if the configured secret/algorithm
        cannot sign at all. That is a deployment fault, not a client error.
        """
        secret, algorithm, lifetime = self._config[kind]
        now = int(self._clock())
        claims = {
            "sub": principal.subject_id,
            "email": principal.email,
            "name": principal.display_name,
            "role": principal.role,
            "iat": now,
            "exp": now + lifetime,
            "nonce": hashlib.sha256(secrets.token_bytes(32)).hexdigest(),
        }
        try:
            return jwt.encode(claims, secret, algorithm=algorithm)
        except JOSEError as exc:
            raise CredentialConfigError(f"cannot sign {kind.value} token with {algorithm}: {exc}") from exc

    def verify(self, kind: TokenKind, token: str) -> TokenPayload:
        """Verify signature, algorithm and expiry; return the payload.

        Raises CredentialExpired when the signature is good but `exp` has
        passed, SignatureInvalid for everything else (malformed, wrong key,
        wrong algorithm, missing claims).
        """
        secret, algorithm, _ = self._config[kind]
        try:
            claims = jwt.decode(token, secret, algorithms=[algorithm])
        except ExpiredSignatureError as exc:
            raise CredentialExpired(kind) from exc
        except JWTError as exc:
            raise SignatureInvalid(kind) from exc
        return _to_payload(claims, kind)

    def decode(self, token: str, kind: TokenKind = TokenKind.REFRESH) -> TokenPayload:
        """Read the claims without verifying anything.

        Only call this on a token that already passed verify() or a cache
        liveness check earlier in the same request. `kind` only selects the
        error raised for a malformed token.
        """
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise SignatureInvalid(kind) from exc
        return _to_payload(claims, kind)


def _to_payload(claims: dict, kind: TokenKind) -> TokenPayload:
    if any(claim not in claims for claim in _REQUIRED_CLAIMS):
        raise SignatureInvalid(kind)
    try:
        return TokenPayload(
            subject_id=str(claims["sub"]),
            email=str(claims["email"]),
            display_name=str(claims["name"]),
            role=str(claims["role"]),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
            nonce=str(claims["nonce"]),
        )
    except (TypeError, ValueError) as exc:
        raise SignatureInvalid(kind) from exc


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input past 72 bytes. The API caps passwords at 72
    characters in the request model so no input is silently shortened.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tollgate_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email:  bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
