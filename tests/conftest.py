"""
tests/conftest.py -- Shared test fixtures for Tollgate.

This module provides:
  - settings:        a fully configured Settings instance for unit tests
  - FakeClock:       a controllable clock for MemoryCacheClient and the codec
  - BrokenCache:     a CacheClient whose every call raises CacheUnavailable
  - seeded_stores:   module-scoped in-memory user + product stores with an
                     admin and a regular user
  - client:          TestClient over the real app with a patched lifespan and
                     a fresh in-memory cache per test
  - flow:            helpers that walk the CSRF -> login handshake

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync code in a thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread.

Environment must be set before any api/ or auth/ import: DEBUG lets
get_settings() generate secrets, and ALLOWED_HOSTS admits TestClient's
"testserver" Host header.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Set before any api/auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("CACHE_URL", "memory://")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_state
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from cache.client import CacheClient, MemoryCacheClient
from catalog.store import ProductStore
from core.config import Settings, get_settings
from core.errors import CacheUnavailable

ADMIN_EMAIL = "admin@tollgate.io"
ADMIN_PASSWORD = "adminpass123"
USER_EMAIL = "user@tollgate.io"
USER_PASSWORD = "userpass123"

# Login is rate limited per IP and every TestClient request comes from the
# same address. The limit itself is slowapi's concern, not ours.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Unit-test helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic-style clock that only moves when told to."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BrokenCache(CacheClient):
    """A cache whose backend is down."""

    async def get(self, key: str) -> str | None:
        raise CacheUnavailable("down")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise CacheUnavailable("down")

    async def touch(self, key: str, ttl_seconds: int) -> bool:
        raise CacheUnavailable("down")

    async def delete(self, key: str) -> bool:
        raise CacheUnavailable("down")

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


@pytest.fixture
def settings() -> Settings:
    return Settings(
        debug=True,
        access_token_secret="a" * 32,
        refresh_token_secret="r" * 32,
        cookie_secret="c" * 32,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock: FakeClock) -> MemoryCacheClient:
    return MemoryCacheClient(clock=clock)


@pytest.fixture
def broken_cache() -> BrokenCache:
    return BrokenCache()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class SeededStores:
    user_store: UserStore
    product_store: ProductStore
    admin_id: int
    user_id: int


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ProductStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. the test module's name).
    """
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    products_url = f"sqlite:///file:test_products_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), ProductStore(db_url=products_url)


def _patch_lifespan(stores: SeededStores, cache: CacheClient):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test stores and the given cache into app.state so
    routes see isolated databases and a cache owned by the test.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_state(app, get_settings(), stores.user_store, stores.product_store, cache)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def seeded_stores(request) -> Generator[SeededStores, None, None]:
    """One admin and one regular user, created once per test module (bcrypt is slow)."""
    user_store, product_store = _make_test_stores(request.module.__name__.replace(".", "_"))
    admin_id = user_store.create_user(
        User(email=ADMIN_EMAIL, name="Admin", role="admin", hashed_password=hash_password(ADMIN_PASSWORD))
    )
    user_id = user_store.create_user(User(email=USER_EMAIL, name="Regular", hashed_password=hash_password(USER_PASSWORD)))
    yield SeededStores(user_store, product_store, admin_id, user_id)
    user_store.close()
    product_store.close()


@pytest.fixture
def client(seeded_stores: SeededStores) -> Generator[TestClient, None, None]:
    """TestClient with a fresh in-memory cache, so sessions never leak between tests."""
    app.router.lifespan_context = _patch_lifespan(seeded_stores, MemoryCacheClient())
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


@pytest.fixture
def broken_client(seeded_stores: SeededStores) -> Generator[TestClient, None, None]:
    """TestClient whose cache backend is down for the whole test."""
    app.router.lifespan_context = _patch_lifespan(seeded_stores, BrokenCache())
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Handshake helpers
# ---------------------------------------------------------------------------


@dataclass
class Session:
    access_token: str
    csrf_token: str

    @property
    def headers(self) -> dict[str, str]:
        """Headers for an authorized, state-changing request."""
        return {"Authorization": f"Bearer {self.access_token}", "X-CSRF-Token": self.csrf_token}


class Flow:
    """Drives the anonymous-CSRF -> login handshake against a TestClient.

    The TestClient keeps cookies, so the signed x-csrf-token and
    x-refresh-token cookies ride along automatically.
    """

    def __init__(self, client: TestClient) -> None:
        self.client = client

    def csrf(self) -> str:
        resp = self.client.get("/api/v1/auth/token")
        assert resp.status_code == 200, resp.text
        return resp.json()["csrf_token"]

    def login(self, email: str = USER_EMAIL, password: str = USER_PASSWORD) -> Session:
        csrf_token = self.csrf()
        resp = self.client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
            headers={"X-CSRF-Token": csrf_token},
        )
        assert resp.status_code == 200, resp.text
        return Session(access_token=resp.json()["access_token"], csrf_token=csrf_token)

    def login_admin(self) -> Session:
        return self.login(ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def flow(client: TestClient) -> Flow:
    return Flow(client)
