"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Tollgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing secrets with a warning, production
      mode refuses to start without them.

Security notes:
  [S1] Access and refresh credentials are signed with different secrets AND
       different algorithms. A leaked access secret must not be enough to forge
       a refresh credential, so identical values are rejected at startup.

  [S2] Secrets shorter than 32 chars are rejected outright. HMAC signing of
       both token kinds and of the CSRF cookie relies on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or catalog/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("tollgate.config")

# HMAC algorithms python-jose can sign with a shared secret.
SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")

_SECRET_FIELDS = ("access_token_secret", "refresh_token_secret", "cookie_secret")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). The
    model_validator enforces the production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///tollgate.db"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    # "memory://" keeps everything in-process (dev/tests). Anything else is
    # handed to redis.asyncio.from_url().
    cache_url: str = "memory://"
    cache_timeout_seconds: float = 1.0
    cache_retries: int = 3

    # Registry groups and cached query lists live as long as a refresh token.
    registry_expire_seconds: int = 7 * 24 * 60 * 60
    query_cache_expire_seconds: int = 7 * 24 * 60 * 60
    record_cache_expire_seconds: int = 5 * 60

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The validator either
    # generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    access_token_algorithm: str = "HS256"
    access_token_expire_seconds: int = 30 * 60

    refresh_token_secret: str = ""
    refresh_token_algorithm: str = "HS512"
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60

    max_concurrent_sessions: int = 3

    # ------------------------------------------------------------------
    # Anti-forgery and cookies
    # ------------------------------------------------------------------

    csrf_token_expire_seconds: int = 5 * 60
    cookie_secret: str = ""
    secure_cookies: bool = False
    # "none" is required when the API lives on another site than the client;
    # lax is the safer default for same-site deployments.
    cookie_samesite: str = "lax"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret and algorithm policy [S1][S2].

        Dev mode (DEBUG=true): auto-generate every missing secret with a
            warning. Sessions will not survive restart -- acceptable locally.

        Production mode: refuse to start if any secret is missing.
        """
        for name in _SECRET_FIELDS:
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                value = secrets.token_hex(32)
                setattr(self, name, value)
                logger.warning("WARNING: Using auto-generated %s. Sessions will not persist across restarts.", name.upper())
            if len(value) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        for name in ("access_token_algorithm", "refresh_token_algorithm"):
            if getattr(self, name) not in SUPPORTED_ALGORITHMS:
                raise ValueError(f"{name.upper()} must be one of {', '.join(SUPPORTED_ALGORITHMS)}.")
        if self.access_token_algorithm == self.refresh_token_algorithm:
            raise ValueError("ACCESS_TOKEN_ALGORITHM and REFRESH_TOKEN_ALGORITHM must differ.")
        if self.max_concurrent_sessions < 1:
            raise ValueError("MAX_CONCURRENT_SESSIONS must be at least 1.")
        if self.query_cache_expire_seconds > self.registry_expire_seconds:
            # A cached listing must not outlive the group that invalidates it.
            raise ValueError("QUERY_CACHE_EXPIRE_SECONDS must not exceed REGISTRY_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
