"""
auth/sessions.py -- Session lifecycle on top of the codec and the cache registry.

Per principal the state moves:

    no-session -> active(n) -> active(n+1)     login
                            -> active(n-1)     logout_one
                            -> no-session      logout_all

Cache layout:
    <refresh token>           -> subject_id     TTL = refresh lifetime
    <access token>            -> subject_id     TTL = access lifetime
    session:<subject_id>      -> JSON list of that subject's refresh tokens

Liveness: a credential is usable only while its own cache entry exists. A
valid signature is necessary but not sufficient -- deleting the entry is how
a session is revoked before its `exp`.

Bounded window after logout_all: only refresh tokens are tracked per
subject. Access tokens minted before logout_all stay live until their own
TTL runs out, i.e. for at most access_token_expire_seconds.

Concurrency: the session-count check and the register that follows are two
separate cache round trips. Two logins racing for the last slot can both
pass the check. The cap is a soft limit under contention.
"""

from __future__ import annotations

import logging

from auth.csrf import binding_key
from auth.models import Principal, TokenPair
from auth.tokens import CredentialCodec
from cache.client import CacheClient
from cache.registry import RegistryStore, session_group
from core.errors import CacheUnavailable, SignatureInvalid, TokenKind, TooManySessions, log_error

logger = logging.getLogger("tollgate.auth.sessions")


class SessionManager:
    """Issues and revokes access/refresh token pairs.

    Usage:
        sessions = SessionManager(codec, cache, registry, max_sessions=3)
        pair = await sessions.login(principal)
        access = await sessions.refresh(pair.refresh_token)
        await sessions.logout_one(pair.refresh_token, access)
        await sessions.logout_all(principal.subject_id)
    """

    def __init__(
        self,
        codec: CredentialCodec,
        cache: CacheClient,
        registry: RegistryStore,
        max_sessions: int = 3,
    ) -> None:
        self.codec = codec
        self.cache = cache
        self.registry = registry
        self.max_sessions = max_sessions

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def is_live(self, token: str) -> bool:
        """True while the token's cache entry exists.

        CacheUnavailable propagates: guards must deny, not guess.
        """
        return await self.cache.get(token) is not None

    async def list_sessions(self, subject_id: str) -> list[str]:
        """Refresh tokens currently registered for subject_id (may include dead ones)."""
        return await self.registry.list_group(session_group(subject_id))

    async def live_sessions(self, subject_id: str) -> list[str]:
        """Registered refresh tokens whose cache entry still exists.

        Members whose entry expired naturally are erased from the group as a
        side effect, so a stale list cannot lock a user out of login.
        """
        group = session_group(subject_id)
        live: list[str] = []
        for token in await self.registry.list_group(group):
            if await self.is_live(token):
                live.append(token)
            else:
                await self.registry.erase_member(group, token)
        return live

    async def session_count(self, subject_id: str) -> int:
        return len(await self.live_sessions(subject_id))

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def login(self, principal: Principal) -> TokenPair:
        """Mint a refresh/access pair and register the session.

        Raises TooManySessions before anything is written when the subject
        already holds max_sessions live sessions.
        """
        subject_id = principal.subject_id
        if len(await self.live_sessions(subject_id)) >= self.max_sessions:
            logger.info("Login refused for subject %s: session cap %d reached", subject_id, self.max_sessions)
            raise TooManySessions(self.max_sessions)

        refresh_token = self.codec.sign(TokenKind.REFRESH, principal)
        await self.cache.set(refresh_token, subject_id, self.codec.lifetime(TokenKind.REFRESH))
        await self.registry.register_member(session_group(subject_id), refresh_token)

        access_token = self.codec.sign(TokenKind.ACCESS, principal)
        await self.cache.set(access_token, subject_id, self.codec.lifetime(TokenKind.ACCESS))

        logger.info("Session opened for subject %s", subject_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def refresh(self, refresh_token: str, old_access_token: str | None = None) -> str:
        """Mint a new access token for the refresh token's subject.

        The refresh token must already have passed the refresh guard; it is
        decoded here, not re-verified, and it is not rotated. The old access
        token is dropped best effort -- it may already have expired.
        """
        payload = self.codec.decode(refresh_token)
        if old_access_token:
            await self._drop_access(old_access_token, payload.subject_id)

        access_token = self.codec.sign(TokenKind.ACCESS, payload.principal)
        await self.cache.set(access_token, payload.subject_id, self.codec.lifetime(TokenKind.ACCESS))
        return access_token

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    async def logout_one(self, refresh_token: str, access_token: str | None = None) -> None:
        """Revoke one session: its refresh entry, CSRF binding and access token."""
        payload = self.codec.decode(refresh_token)
        await self.cache.delete(refresh_token)
        await self.registry.erase_member(session_group(payload.subject_id), refresh_token)
        await self._best_effort_delete(binding_key(refresh_token), "logout csrf binding")
        if access_token:
            await self._drop_access(access_token, payload.subject_id)
        logger.info("Session closed for subject %s", payload.subject_id)

    async def logout_all(self, subject_id: str) -> int:
        """Revoke every registered session of subject_id. Returns how many.

        Access tokens are not tracked per subject and expire on their own.
        """
        revoked = await self.registry.invalidate_group(session_group(subject_id))
        for refresh_token in revoked:
            await self._best_effort_delete(binding_key(refresh_token), "logout_all csrf binding")
        logger.info("All sessions revoked for subject %s (%d)", subject_id, len(revoked))
        return len(revoked)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _drop_access(self, access_token: str, subject_id: str) -> None:
        """Delete an access token entry if it belongs to subject_id."""
        try:
            owner = self.codec.decode(access_token, TokenKind.ACCESS).subject_id
        except SignatureInvalid:
            return
        if owner != subject_id:
            logger.warning("Refusing to drop access token of subject %s for subject %s", owner, subject_id)
            return
        await self._best_effort_delete(access_token, "drop access token")

    async def _best_effort_delete(self, key: str, location: str) -> None:
        try:
            await self.cache.delete(key)
        except CacheUnavailable as exc:
            log_error(location, exc, known=True)
