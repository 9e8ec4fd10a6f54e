"""
api/routes/v1/auth.py -- Session, credential and anti-forgery endpoints.

Routes:
  GET  /api/v1/auth/token                 -- issue anonymous CSRF token + hashed cookie
  GET  /api/v1/auth/token/check           -- anonymous CSRF diagnostic
  POST /api/v1/auth/register              -- create account and open a session
  POST /api/v1/auth/login                 -- password login; opens a session
  POST /api/v1/auth/refresh               -- new access token, rotated CSRF pair
  POST /api/v1/auth/logout                -- close the current session
  POST /api/v1/auth/logout/all            -- close every session of the caller
  POST /api/v1/auth/users/{id}/logout     -- close every session of a user (admin)
  GET  /api/v1/auth/check                 -- session diagnostic
  GET  /api/v1/auth/me                    -- identity from the access token

Browser flow:
  1. GET /auth/token. Keep csrf_token, the signed x-csrf-token cookie is set.
  2. POST /auth/login with X-CSRF-Token. The pair is promoted to the new
     refresh token; the signed x-refresh-token cookie is set and the access
     token comes back in the body.
  3. Authorized calls send Authorization: Bearer <access> and, when they
     change state, X-CSRF-Token again.
  4. On 401 access_token_expired, POST /auth/refresh.

Security:
  POST /login and /register are rate-limited per IP.
  authenticate_user() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a credential.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    CsrfCheckResponse,
    CsrfTokenResponse,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    RefreshResponse,
    RegisterRequest,
    SessionCheckResponse,
    UserResponse,
)
from auth.cookies import CSRF_COOKIE, CookieJar
from auth.dependencies import (
    Credential,
    bearer_token,
    require_access_token,
    require_admin,
    require_anonymous_csrf,
    require_authorized_csrf,
    require_refresh_token,
)
from auth.models import Principal, User
from auth.store import UserStore
from auth.tokens import authenticate_user, hash_password
from core.config import get_settings
from core.errors import CsrfExpired, TokenKind

# Auth policy:
# - GET  /auth/token, /auth/token/check:  anonymous (check needs the anonymous pair)
# - POST /auth/register, /auth/login:     anonymous CSRF pair
# - POST /auth/refresh:                   live refresh token + authorized CSRF pair
# - POST /auth/logout:                    live refresh token
# - POST /auth/logout/all:                live refresh token + authorized CSRF pair
# - POST /auth/users/{id}/logout:         admin access token + authorized CSRF pair
# - GET  /auth/check:                     live access token + authorized CSRF pair
# - GET  /auth/me:                        live access token
router = APIRouter()

_LOGIN_LIMIT = get_settings().login_rate_limit


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, role=user.role, created_at=user.created_at)


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


async def _open_session(request: Request, user: User, csrf_token: str, status_code: int) -> JSONResponse:
    """Log user in, bind the anonymous CSRF pair to the new refresh token, set cookies."""
    state = request.app.state
    pair = await state.sessions.login(Principal.from_user(user))
    try:
        await state.handshake.promote(csrf_token, pair.refresh_token)
    except CsrfExpired:
        await state.sessions.logout_one(pair.refresh_token, pair.access_token)
        raise

    jar: CookieJar = state.cookies
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            user=_user_response(user),
            access_token=pair.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=state.codec.lifetime(TokenKind.ACCESS),
        ).model_dump(),
    )
    refresh_lifetime = state.codec.lifetime(TokenKind.REFRESH)
    jar.set_refresh(resp, pair.refresh_token, max_age=refresh_lifetime)
    # Same hash, longer life: the pair now lives as long as the refresh token.
    jar.set_csrf(resp, jar.read(request, CSRF_COOKIE), max_age=refresh_lifetime)
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Anonymous endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/token", response_model=CsrfTokenResponse)
async def issue_csrf_token(request: Request) -> JSONResponse:
    """Issue an anonymous anti-forgery token.

    The body carries csrf_token; the signed httpOnly cookie carries its hash.
    Both are needed for login and register.
    """
    handshake = request.app.state.handshake
    pair = await handshake.issue_anonymous()
    resp = JSONResponse(
        content=CsrfTokenResponse(csrf_token=pair.csrf_token, expires_in=handshake.anonymous_ttl).model_dump()
    )
    request.app.state.cookies.set_csrf(resp, pair.hashed, max_age=handshake.anonymous_ttl)
    return _no_store(resp)


@router.get("/auth/token/check", response_model=CsrfCheckResponse)
async def check_csrf_token(_csrf: str = Depends(require_anonymous_csrf)) -> CsrfCheckResponse:
    """Confirm that the anonymous header/cookie pair is valid."""
    return CsrfCheckResponse()


@limiter.limit(_LOGIN_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=LoginResponse, status_code=201)
async def register(
    request: Request,
    body: RegisterRequest,
    csrf_token: str = Depends(require_anonymous_csrf),
) -> JSONResponse:
    """Create an account with the "user" role and open its first session.

    409 email_taken if the email is already registered.
    """
    user_store: UserStore = request.app.state.user_store
    user = User(email=body.email, name=body.name, hashed_password=hash_password(body.password))
    try:
        user.id = user_store.create_user(user)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "An account with this email already exists."},
        )
    created = user_store.get_by_id(user.id)
    return await _open_session(request, created, csrf_token, status_code=201)


@limiter.limit(_LOGIN_LIMIT)  # brute-force mitigation
@router.post("/auth/login", response_model=LoginResponse)
async def login(
    request: Request,
    body: LoginRequest,
    csrf_token: str = Depends(require_anonymous_csrf),
) -> JSONResponse:
    """Authenticate with email and password; open a session.

    Returns the same generic error for an unknown email and a wrong password
    so the response does not reveal which accounts exist. 403
    too_many_sessions when the account is already at its session cap.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        return _no_store(
            JSONResponse(
                status_code=401,
                content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
            )
        )
    return await _open_session(request, user, csrf_token, status_code=200)


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    refresh_cred: Credential = Depends(require_refresh_token),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> JSONResponse:
    """Mint a new access token and rotate the anti-forgery pair.

    The previous access token, if sent, is revoked. The refresh token itself
    is not rotated.
    """
    state = request.app.state
    access_token = await state.sessions.refresh(refresh_cred.token, bearer_token(request))
    pair = await state.handshake.rotate(refresh_cred.token)
    resp = JSONResponse(
        content=RefreshResponse(
            access_token=access_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=state.codec.lifetime(TokenKind.ACCESS),
            csrf_token=pair.csrf_token,
        ).model_dump()
    )
    state.cookies.set_csrf(resp, pair.hashed, max_age=state.codec.lifetime(TokenKind.REFRESH))
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, refresh_cred: Credential = Depends(require_refresh_token)) -> JSONResponse:
    """Close the current session and clear the session cookies."""
    await request.app.state.sessions.logout_one(refresh_cred.token, bearer_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    request.app.state.cookies.clear(resp)
    return resp


@router.post("/auth/logout/all", response_model=LogoutAllResponse)
async def logout_all(
    request: Request,
    refresh_cred: Credential = Depends(require_refresh_token),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> JSONResponse:
    """Close every session of the caller, on every device.

    Access tokens already handed out stay usable until they expire on their
    own (at most ACCESS_TOKEN_EXPIRE_SECONDS).
    """
    revoked = await request.app.state.sessions.logout_all(refresh_cred.payload.subject_id)
    resp = JSONResponse(content=LogoutAllResponse(revoked=revoked).model_dump())
    request.app.state.cookies.clear(resp)
    return resp


@router.post("/auth/users/{user_id}/logout", response_model=LogoutAllResponse)
async def force_logout(
    request: Request,
    user_id: int,
    _admin: Credential = Depends(require_admin),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> LogoutAllResponse:
    """Close every session of another user. Admin only."""
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_id(user_id) is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"User {user_id} not found."})
    revoked = await request.app.state.sessions.logout_all(str(user_id))
    return LogoutAllResponse(revoked=revoked)


@router.get("/auth/check", response_model=SessionCheckResponse)
async def check_session(
    request: Request,
    access: Credential = Depends(require_access_token),
    refresh_cred: Credential = Depends(require_authorized_csrf),
) -> SessionCheckResponse:
    """Describe the caller's session. Never echoes tokens or keys."""
    sessions = request.app.state.sessions
    subject_id = access.payload.subject_id
    return SessionCheckResponse(
        subject_id=subject_id,
        email=access.payload.email,
        role=access.payload.role,
        sessions=await sessions.session_count(subject_id),
        max_sessions=sessions.max_sessions,
        access_expires_at=access.payload.expires_at,
        refresh_expires_at=refresh_cred.payload.expires_at,
    )


@router.get("/auth/me", response_model=MeResponse)
async def me(access: Credential = Depends(require_access_token)) -> MeResponse:
    """Return identity information carried by the access token."""
    payload = access.payload
    return MeResponse(subject_id=payload.subject_id, email=payload.email, name=payload.display_name, role=payload.role)
