"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AccessClaims, AuthResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", something on both sides, a dot in the domain.
# Deliverability is the mail system's job, not the registration endpoint's.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Emails are lower-cased so "A@x.com" and "a@x.com" cannot register twice.
    Usernames keep their case; uniqueness on them is exact.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        value = value.lower()
        if not _EMAIL_RE.match(value):
            raise ValueError("must be a valid email address")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. The identifier may be an email or a username."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email_or_username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(str_strip_whitespace=True)

    refresh_token: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """Public projection of an identity. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    is_active: bool


class AuthResponse(BaseModel):
    """Token pair returned by register, login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int = Field(description="Access token lifetime in seconds.")
    user: UserInfo

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        """Build an AuthResponse from the service's AuthResult."""
        user = result.user
        return cls(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            token_type=result.token_type,
            expires_in=result.expires_in,
            user=UserInfo(
                id=user.id,
                email=user.email,
                username=user.username,
                first_name=user.first_name,
                last_name=user.last_name,
                is_active=user.is_active,
            ),
        )


class MeResponse(BaseModel):
    """Identity carried by the caller's access token."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    username: str

    @classmethod
    def from_claims(cls, claims: AccessClaims) -> "MeResponse":
        return cls(id=claims.identity_id, email=claims.email, username=claims.username)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Every non-2xx response body: {"error": {"code", "message", "detail"}}."""

    error: ErrorDetail
