"""
api/main.py -- FastAPI application entry point for Tollgate.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every collaborator once and stores it on app.state:
  user_store, product_store   relational stores (SQLAlchemy Core)
  cache                       key-value cache client (memory or Redis)
  registry                    named groups of cache keys on top of cache
  codec                       access/refresh credential codec
  sessions                    session manager (login, refresh, logout)
  handshake                   anti-forgery handshake
  queries                     read-through query cache
  cookies                     signed cookie jar
Shutdown closes them in reverse order.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.products import router as products_router
from api.routes.v1.users import router as users_router
from auth.cookies import CSRF_HEADER, REFRESH_HEADER, CookieJar
from auth.csrf import CsrfHandshake
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import CredentialCodec
from cache.client import CacheClient, create_cache_client
from cache.queries import QueryCache
from cache.registry import RegistryStore
from catalog.store import ProductStore
from core.config import Settings, get_settings
from core.errors import AuthError, AuthErrorKind, CacheUnavailable, TokenKind, log_error

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tollgate.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def wire_state(
    app: FastAPI,
    settings: Settings,
    user_store: UserStore,
    product_store: ProductStore,
    cache: CacheClient,
) -> None:
    """Store the relational stores, the cache, and everything built on the cache in app.state."""
    app.state.user_store = user_store
    app.state.product_store = product_store
    app.state.cache = cache
    app.state.registry = RegistryStore(cache, ttl_seconds=settings.registry_expire_seconds)
    app.state.codec = CredentialCodec(settings)
    app.state.sessions = SessionManager(
        app.state.codec,
        cache,
        app.state.registry,
        max_sessions=settings.max_concurrent_sessions,
    )
    app.state.handshake = CsrfHandshake(cache, app.state.codec, anonymous_ttl=settings.csrf_token_expire_seconds)
    app.state.queries = QueryCache(cache, app.state.registry, ttl_seconds=settings.query_cache_expire_seconds)
    app.state.cookies = CookieJar(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the collaborators on startup and close them on shutdown.

    Startup order follows the dependency graph: stores and the cache client
    first, then everything that wraps the cache.
    """
    logger.info("Tollgate API starting up")
    user_store = UserStore(db_url=settings.database_url)
    product_store = ProductStore(db_url=settings.database_url)
    logger.info("Relational stores initialized")

    cache = create_cache_client(settings)
    wire_state(app, settings, user_store, product_store, cache)
    if await cache.ping():
        logger.info("Cache initialized (%s)", type(cache).__name__)
    else:
        logger.warning("Cache not reachable at startup -- authorization requests will fail with 503")

    yield

    await cache.close()
    app.state.product_store.close()
    app.state.user_store.close()
    logger.info("Tollgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Tollgate API",
    description="Session, credential and anti-forgery gateway with a cache-registry backed product catalog.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# Credentials are needed so the browser sends the signed session cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", CSRF_HEADER, REFRESH_HEADER],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(products_router, prefix="/api/v1", tags=["Products"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def _ends_session(exc: AuthError) -> bool:
    """True for failures after which the browser's session cookies are useless."""
    if exc.kind in (AuthErrorKind.CSRF_INVALID, AuthErrorKind.CSRF_EXPIRED):
        return True
    return getattr(exc, "token_kind", None) is TokenKind.REFRESH


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map an authorization failure to its status code and stable error code.

    CSRF and refresh-token failures also clear the session cookies so the
    client starts over from GET /auth/token.
    """
    log_error(f"{request.method} {request.url.path}", exc, known=True)
    response = _error_response(exc.status_code, exc.code, exc.message)
    if _ends_session(exc):
        request.app.state.cookies.clear(response)
    return response


@app.exception_handler(CacheUnavailable)
async def cache_unavailable_handler(request: Request, exc: CacheUnavailable) -> JSONResponse:
    """Fail closed: an authorization decision that needs the cache is refused."""
    log_error(f"{request.method} {request.url.path}", exc, known=True)
    response = _error_response(503, "cache_unavailable", "Session store temporarily unavailable.")
    response.headers["Retry-After"] = "5"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code": ..., "message": ...}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    log_error(f"{request.method} {request.url.path}", exc, known=False)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and per-component status."""
    state = request.app.state
    database_ok = state.user_store.ping() and state.product_store.ping()
    components = {
        "app": "ok",
        "database": "ok" if database_ok else "error",
        "cache": "ok" if await state.cache.ping() else "error",
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
