"""
api/routes/v1/users.py -- User records.

Routes:
  GET /api/v1/users             -- every user, ordered by email (admin)
  GET /api/v1/users/{user_id}   -- user profile (access token + authorized CSRF)

The record is read through the cache under "user:record:<id>" with a short TTL;
each hit prolongs it. The password hash never enters the cache.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import UserResponse
from auth.dependencies import Credential, require_access_token, require_admin, require_authorized_csrf
from auth.models import User
from auth.store import UserStore
from cache.queries import QueryCache
from cache.registry import make_cache_key
from core.config import get_settings

router = APIRouter()


def _to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, role=user.role, created_at=user.created_at)


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    _admin: Credential = Depends(require_admin),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> list[UserResponse]:
    """Return every user. Admin only; never cached."""
    user_store: UserStore = request.app.state.user_store
    return [_to_response(u) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    request: Request,
    user_id: int,
    _access: Credential = Depends(require_access_token),
    _csrf: Credential = Depends(require_authorized_csrf),
) -> UserResponse:
    """Return a user's public profile. 404 if no such user."""
    queries: QueryCache = request.app.state.queries
    key = make_cache_key("user", "record", str(user_id))
    ttl = get_settings().record_cache_expire_seconds

    cached = await queries.get(key, ttl_seconds=ttl)
    if cached is not None:
        return UserResponse(**cached)

    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": f"User {user_id} not found."})
    profile = _to_response(user)
    await queries.put(None, key, profile.model_dump(), ttl_seconds=ttl)
    return profile
