"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in workouts/models.py -- dataclasses own domain shape; stores and the
service do the work.

Layer rule: no imports from api/ or workouts/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TokenKind(str, Enum):
    """Tag distinguishing tokens that share one storage shape."""

    ACCESS = "access"
    REFRESH = "refresh"
    RESET_PASSWORD = "reset_password"
    VERIFY_EMAIL = "verify_email"
    VERIFY_OTP = "verify_otp"


class UserType(str, Enum):
    EMAIL = "email"
    GOOGLE = "google"


class UserRank(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass
class User:
    """An account in FitTrack.

    id is None until the store assigns one on insert. A provisional user
    returned by the Google token exchange stays id=None until the route
    decides to register it.

    hashed_password is always set: Google accounts get a random placeholder
    so the column never needs a NULL branch.
    """

    email: str
    hashed_password: str
    name: str = ""
    first_name: str | None = None
    last_name: str | None = None
    picture_url: str | None = None
    type: str = UserType.EMAIL.value  # "email" | "google"
    is_email_verified: bool = False
    rank: str = UserRank.BEGINNER.value
    role: str = "user"  # "user" | "admin"
    id: str | None = None
    created_at: str | None = None


@dataclass
class Token:
    """A persisted token row.

    token holds either a signed JWT (refresh, reset_password, verify_email)
    or a 6-digit code (verify_otp). Access tokens never become rows.
    """

    token: str
    user_id: str
    type: str  # TokenKind value
    expires: datetime
    blacklisted: bool = False
    id: int | None = None
    created_at: str | None = None


@dataclass
class IssuedToken:
    token: str
    expires: datetime


@dataclass
class AuthTokens:
    """An access + refresh pair as handed to the client."""

    access: IssuedToken
    refresh: IssuedToken
