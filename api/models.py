"""
API request and response models for authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names are camelCase (refreshToken, isEmailVerified) to keep the
wire format stable for existing clients; Python attribute names stay
snake_case through alias_generator=to_camel.
"""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import AuthTokens, IssuedToken, User

_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"\d")

# bcrypt refuses longer inputs.
_MAX_PASSWORD_BYTES = 72


def _check_password_strength(value: str) -> str:
    if len(value.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {_MAX_PASSWORD_BYTES} bytes")
    if not _LETTER.search(value) or not _DIGIT.search(value):
        raise ValueError("password must contain at least 1 letter and 1 number")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=_MAX_PASSWORD_BYTES)
    name: str = Field(default="", max_length=255)

    @field_validator("email", "name", mode="before")
    @classmethod
    def strip_whitespace(cls, value):
        # The password is kept verbatim.
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(_CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshTokenRequest(_CamelModel):
    """Body for POST /auth/logout and POST /auth/refresh-tokens."""

    refresh_token: str = Field(min_length=1)


class ForgotPasswordRequest(_CamelModel):
    email: EmailStr


class ResetPasswordRequest(_CamelModel):
    password: str = Field(min_length=8, max_length=_MAX_PASSWORD_BYTES)

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """Public view of a user. The password hash is never part of it."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    email: str
    name: str
    role: str
    is_email_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_email_verified=user.is_email_verified,
        )


class TokenResponse(_CamelModel):
    token: str
    expires: datetime

    @classmethod
    def from_issued(cls, issued: IssuedToken) -> "TokenResponse":
        return cls(token=issued.token, expires=issued.expires)


class AuthTokensResponse(_CamelModel):
    access: TokenResponse
    refresh: TokenResponse

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "AuthTokensResponse":
        return cls(access=TokenResponse.from_issued(tokens.access), refresh=TokenResponse.from_issued(tokens.refresh))


class AuthResponse(_CamelModel):
    """Response for register, login and the Google callback."""

    user: UserResponse
    tokens: AuthTokensResponse

    @classmethod
    def build(cls, user: User, tokens: AuthTokens) -> "AuthResponse":
        return cls(user=UserResponse.from_user(user), tokens=AuthTokensResponse.from_tokens(tokens))
