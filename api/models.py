"""
API request and response models for FitTrack REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
workouts/models.py, which own the internal domain representation. Route
handlers map between the two.

Every request body is an explicit model: required and optional fields are
validated here, before anything reaches AuthService or a store.

Wire format is camelCase (firstName, refreshToken, totalPages). Models accept
either the camelCase alias or the snake_case field name on input and emit
camelCase on output.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import AuthTokens, User
from core.query import Page
from workouts.models import Workout

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# >= 8 chars, at least one lowercase, uppercase, digit, and one of !@#$%^&*()_+.
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*()_+.])[A-Za-z\d!@#$%^&*()_+.]{8,}$")
PASSWORD_RULE = (
    "Password must contain at least 8 characters, 1 number, 1 uppercase & 1 lowercase letter "
    "and one of these special characters (!@#$%^&*()_+.)"
)

USER_ID_PATTERN = r"^[0-9a-f]{32}$"


def _check_password(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULE)
    return value


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _ApiResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class RankEnum(str, Enum):
    beginner = "beginner"
    intermediate = "intermediate"
    advanced = "advanced"


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/v1/auth/register.

    Either name or firstName/lastName should be supplied; when name is
    missing it is built from the two parts.
    """

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    picture_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("password")
    @classmethod
    def password_rule(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(_ApiModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class RefreshTokenRequest(_ApiModel):
    """Body for /logout and /refresh-tokens."""

    refresh_token: str = Field(min_length=1)


class EmailRequest(_ApiModel):
    """Body for /forgot-password and /resend-verification-code."""

    email: EmailStr


class ResetPasswordRequest(_ApiModel):
    password: str = Field(min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def password_rule(cls, value: str) -> str:
        return _check_password(value)


class VerifyCodeRequest(_ApiModel):
    """Body for POST /api/v1/auth/verify-code. Accepts user_id or userId."""

    user_id: str = Field(pattern=USER_ID_PATTERN)
    code: int = Field(ge=100000, le=999999)


class GoogleTokenRequest(_ApiModel):
    access_token: str = Field(min_length=1)
    register_account: bool = Field(default=False, alias="register")


# ---------------------------------------------------------------------------
# User management request models
# ---------------------------------------------------------------------------


class UserCreate(_ApiModel):
    """Request body for POST /api/v1/users (admin only)."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    role: RoleEnum = RoleEnum.user
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    picture_url: Optional[str] = Field(default=None, max_length=2048)
    is_email_verified: bool = False

    @field_validator("password")
    @classmethod
    def password_rule(cls, value: str) -> str:
        return _check_password(value)


class UserPatch(_ApiModel):
    """Request body for PATCH /api/v1/users/{user_id}. All fields optional."""

    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    picture_url: Optional[str] = Field(default=None, max_length=2048)
    rank: Optional[RankEnum] = None
    role: Optional[RoleEnum] = None

    @field_validator("password")
    @classmethod
    def password_rule(cls, value: Optional[str]) -> Optional[str]:
        return _check_password(value) if value is not None else value


# ---------------------------------------------------------------------------
# Auth / user response models
# ---------------------------------------------------------------------------


class UserResponse(_ApiResponse):
    """Public view of a user. The password hash is never part of it."""

    id: str
    email: str
    name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture_url: Optional[str] = None
    type: str
    is_email_verified: bool
    rank: str
    role: str
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            first_name=user.first_name,
            last_name=user.last_name,
            picture_url=user.picture_url,
            type=user.type,
            is_email_verified=user.is_email_verified,
            rank=user.rank,
            role=user.role,
            created_at=user.created_at,
        )


class TokenResponse(_ApiResponse):
    token: str
    expires: datetime


class AuthTokensResponse(_ApiResponse):
    access: TokenResponse
    refresh: TokenResponse

    @classmethod
    def from_tokens(cls, tokens: AuthTokens) -> "AuthTokensResponse":
        return cls(
            access=TokenResponse(token=tokens.access.token, expires=tokens.access.expires),
            refresh=TokenResponse(token=tokens.refresh.token, expires=tokens.refresh.expires),
        )


class RegisterResponse(_ApiResponse):
    user: UserResponse


class AuthResponse(_ApiResponse):
    """Response for /login, /verify-code and /google."""

    user: UserResponse
    tokens: AuthTokensResponse


class UserPage(_ApiResponse):
    results: list[UserResponse]
    page: int
    limit: int
    total_pages: int
    total_results: int

    @classmethod
    def from_page(cls, page: Page) -> "UserPage":
        return cls(
            results=[UserResponse.from_user(u) for u in page.results],
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
            total_results=page.total_results,
        )


# ---------------------------------------------------------------------------
# Workouts
# ---------------------------------------------------------------------------


class WorkoutCreate(_ApiModel):
    """Request body for POST /api/v1/workouts. The owner comes from the token."""

    name: str = Field(min_length=1, max_length=255)
    group: int
    picture_url: Optional[str] = Field(default=None, max_length=2048)
    description: Optional[str] = Field(default=None, max_length=2000)


class WorkoutResponse(_ApiResponse):
    id: int
    name: str
    group: int
    picture_url: Optional[str] = None
    description: Optional[str] = None
    user_id: str
    created_at: str
    updated_at: str

    @classmethod
    def from_workout(cls, workout: Workout) -> "WorkoutResponse":
        return cls(
            id=workout.id,
            name=workout.name,
            group=workout.group,
            picture_url=workout.picture_url,
            description=workout.description,
            user_id=workout.user_id,
            created_at=workout.created_at,
            updated_at=workout.updated_at,
        )


class WorkoutPage(_ApiResponse):
    results: list[WorkoutResponse]
    page: int
    limit: int
    total_pages: int
    total_results: int

    @classmethod
    def from_page(cls, page: Page) -> "WorkoutPage":
        return cls(
            results=[WorkoutResponse.from_workout(w) for w in page.results],
            page=page.page,
            limit=page.limit,
            total_pages=page.total_pages,
            total_results=page.total_results,
        )


# ---------------------------------------------------------------------------
# Errors and health
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

    status: str = "ok"
    version: str
