"""
API request and response models for the Tollgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
catalog/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: domain models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Three upper-case letters, a dash, three digits. "000" is rejected separately.
PRODUCT_CODE_PATTERN = r"^[A-Z]{3}-\d{3}$"
PRODUCT_NAME_PATTERN = r"^[A-Za-z0-9 ]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProductOrderEnum(str, Enum):
    code = "code"
    name = "name"
    price = "price"
    created_at = "created_at"


class SortEnum(str, Enum):
    asc = "asc"
    desc = "desc"


# ---------------------------------------------------------------------------
# Shared envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Structured error detail included in all error responses.

    code is stable and machine-checkable (e.g. "access_token_expired");
    clients branch on it, never on message.
    """

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standard error envelope returned on 4xx and 5xx responses."""

    error: ErrorDetail


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class CsrfTokenResponse(BaseModel):
    """An anti-forgery token. Send it back in the X-CSRF-Token header."""

    csrf_token: str
    expires_in: int


class CsrfCheckResponse(BaseModel):
    message: str = "csrf token ok"


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Passwords are capped at 72 characters because bcrypt ignores anything past
    72 bytes.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=72)


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    role: str
    created_at: Optional[str] = None


class LoginResponse(BaseModel):
    """Body of a successful login or registration.

    The refresh token is never in the body; it travels in the signed
    httpOnly x-refresh-token cookie.
    """

    user: UserResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    """A new access token plus the rotated anti-forgery token."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    csrf_token: str


class LogoutAllResponse(BaseModel):
    revoked: int


class SessionCheckResponse(BaseModel):
    """Diagnostic view of the caller's session. Never echoes secrets."""

    subject_id: str
    email: str
    role: str
    sessions: int
    max_sessions: int
    access_expires_at: int
    refresh_expires_at: int


class MeResponse(BaseModel):
    subject_id: str
    email: str
    name: str
    role: str


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class ProductCreate(BaseModel):
    """Request body for POST /api/v1/products."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(min_length=7, max_length=7, pattern=PRODUCT_CODE_PATTERN)
    name: str = Field(min_length=1, max_length=100, pattern=PRODUCT_NAME_PATTERN)
    price: int = Field(ge=1)

    @field_validator("code")
    @classmethod
    def reject_zero_serial(cls, v: str) -> str:
        if v.endswith("-000"):
            raise ValueError("product code serial must not be 000")
        return v


class ProductPatch(BaseModel):
    """Request body for PATCH /api/v1/products/{code}. Omitted fields are untouched."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=PRODUCT_NAME_PATTERN)
    price: Optional[int] = Field(default=None, ge=1)


class ProductResponse(BaseModel):
    code: str
    name: str
    price: int
    created_at: str
    updated_at: str


class ProductListResponse(BaseModel):
    """One page of products.

    max_page is the zero-based index of the last page for the current filters.
    """

    items: list[ProductResponse]
    total: int
    page: int
    limit: int
    max_page: int
