"""
API request and response models for the salon auth HTTP routes.

These Pydantic v2 models define the HTTP transport contract. They are
separate from the dataclasses in auth/models.py, which own the domain shape;
route handlers map between the two. No response model has a password or
password hash field.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthResult, Identity, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    identifier: str = Field(max_length=254, description="Email or username.")
    password: str = Field(max_length=128)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    """Optional body for POST /auth/refresh; the refresh_token cookie is used when absent."""

    refresh_token: Optional[str] = None


class RegisterRequest(BaseModel):
    email: str = Field(max_length=254)
    username: str = Field(max_length=64)
    password: str = Field(max_length=128)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    role: Optional[Role] = None


class ActivePatch(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        """Factory Method: the Identity -> transport mapping lives with the output model."""
        return cls(
            id=identity.id,
            email=identity.email,
            username=identity.username,
            first_name=identity.first_name,
            last_name=identity.last_name,
            role=identity.role,
            is_active=identity.is_active,
            last_login=identity.last_login,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
        )


class AuthResponse(BaseModel):
    """Login, refresh, and register result. Tokens are absent for register."""

    model_config = ConfigDict(frozen=True)

    user: IdentityResponse
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    csrf_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        return cls(
            user=IdentityResponse.from_identity(result.identity),
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            csrf_token=result.csrf_token,
            expires_at=result.expires_at,
        )


class SessionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    user: Optional[IdentityResponse] = None


class CsrfResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    csrf_token: str


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Logged out."
    csrf_token: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[list[str]] = None
    retry_after_minutes: Optional[int] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
