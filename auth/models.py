"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the codec and
the session manager do the work; these types only carry shape.

Layer rule: no imports from api/, cache/, or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A principal record in the relational store.

    email is the login identifier and is unique. role is "admin" or "user";
    the authority guard compares the token's role claim against "admin".
    """

    email: str
    name: str
    role: str = "user"  # "admin", "user"
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """The identity that gets signed into a credential."""

    subject_id: str
    email: str
    display_name: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(subject_id=str(user.id), email=user.email, display_name=user.name, role=user.role)


@dataclass(frozen=True)
class TokenPayload:
    """Decoded credential claims.

    Immutable once signed. nonce is a SHA-256 of fresh random bytes, so two
    tokens for the same principal issued in the same second still differ.
    issued_at and expires_at are UNIX timestamps (seconds).
    """

    subject_id: str
    email: str
    display_name: str
    role: str
    issued_at: int
    expires_at: int
    nonce: str

    @property
    def principal(self) -> Principal:
        return Principal(
            subject_id=self.subject_id,
            email=self.email,
            display_name=self.display_name,
            role=self.role,
        )


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class CsrfPair:
    """An anti-forgery token, its server-held key, and the cookie hash.

    csrf_token goes to the client in the response body and comes back in the
    X-CSRF-Token header. csrf_key never leaves the cache. hashed is
    sha256(csrf_key + csrf_token) and travels in a signed cookie.
    """

    csrf_token: str
    csrf_key: str
    hashed: str
