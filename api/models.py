"""
API request and response models for the user management REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
password_hash never appears in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Account, Role, Scope

# bcrypt refuses input longer than 72 bytes; max_length counts characters, so
# multi-byte passwords need their own check.
BCRYPT_MAX_BYTES = 72


def _check_password_bytes(value: Optional[str]) -> Optional[str]:
    if value is not None and len(value.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes when UTF-8 encoded.")
    return value


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    # Capped well below bcrypt's 72-byte truncation point for ASCII input.
    password: str = Field(min_length=1, max_length=64)


class LoginResponse(BaseModel):
    """Bearer token issued on successful login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    role: Role
    tenant_id: int


class ScopeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- the caller's resolved scope."""

    model_config = ConfigDict(frozen=True)

    username: str
    role: Role
    tenant_id: int

    @classmethod
    def from_scope(cls, scope: Scope) -> "ScopeResponse":
        return cls(username=scope.subject, role=scope.role, tenant_id=scope.tenant_id)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users.

    tenant_id defaults to the caller's tenant when omitted. Supplying another
    tenant is accepted by validation and then refused by the guard.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=64)
    role: Role = Role.USER
    tenant_id: Optional[int] = Field(default=None, ge=1)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class UserUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=64)
    role: Optional[Role] = None
    tenant_id: Optional[int] = Field(default=None, ge=1)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value)


class UserResponse(BaseModel):
    """One account as returned to callers."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: Role
    tenant_id: int
    created_by: str
    created_at: str
    modified_by: Optional[str] = None
    modified_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "UserResponse":
        """Build a UserResponse from the domain Account (drops password_hash)."""
        return cls(
            id=account.id,
            username=account.username,
            role=account.role,
            tenant_id=account.tenant_id,
            created_by=account.created_by or "",
            created_at=account.created_at or "",
            modified_by=account.modified_by,
            modified_at=account.modified_at,
        )


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
