"""
API request and response models for the LMS auth service.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Every response body is an Envelope:
    {"success": bool, "message": str, "data": ... | null, "error": {...} | null}
"""

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User
from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# At least 8 chars from [A-Za-z0-9!@#$%^&*], with one uppercase letter, one
# digit and one special character. Checked with Python's re in a validator:
# pydantic's default regex engine has no look-ahead support.
_STRONG_PASSWORD_RE = re.compile(r"^(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*])[A-Za-z\d!@#$%^&*]{8,}$")
_STRONG_PASSWORD_MSG = (
    "Password must be at least 8 characters long, include at least one uppercase letter, "
    "one number, and one special character (!@#$%^&*)."
)


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")
    return value


def _check_strong_password(value: str) -> str:
    if not _STRONG_PASSWORD_RE.match(value):
        raise ValueError(_STRONG_PASSWORD_MSG)
    return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    student = "student"
    instructor = "instructor"
    admin = "admin"


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    detail: Optional[Any] = None


class Envelope(BaseModel):
    """Uniform response body for success and failure."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[ErrorDetail] = None


def ok(message: str, data: Any = None) -> dict:
    return Envelope(success=True, message=message, data=data).model_dump()


def fail(message: str, code: str, detail: Any = None) -> dict:
    return Envelope(success=False, message=message, error=ErrorDetail(code=code, detail=detail)).model_dump()


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class _EmailBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str) -> str:
        return value.lower()


class RegisterRequest(_EmailBody):
    """Request body for POST /api/v1/auth/register."""

    name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_strong_password(value)


class LoginRequest(_EmailBody):
    """Request body for POST /api/v1/auth/login."""

    password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# User management request models
# ---------------------------------------------------------------------------


class UserCreate(_EmailBody):
    """Request body for POST /api/v1/users (admin only).

    password is optional: an admin may pre-create an account that will be
    claimed by Google sign-in with the same email.
    """

    name: str = Field(min_length=2, max_length=100)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    role: RoleEnum = RoleEnum.student
    avatar_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_bytes(value) if value is not None else None


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Only provided fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    role: Optional[RoleEnum] = None
    avatar_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value is not None else None


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/users/{id}/password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=8, max_length=128)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_strong_password(value)

    @model_validator(mode="after")
    def passwords_match(self) -> "PasswordChange":
        if self.confirm_password != self.new_password:
            raise ValueError("Password confirmation does not match new password.")
        return self


class UserStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/status."""

    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Sanitized user: the account without password_hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    role: str
    oauth_provider: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.sanitized())


class HealthData(BaseModel):
    """Payload of GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
