"""
auth/tokens.py -- Token issuer: signed tokens, OTP codes, password hashing.

Security design decisions:
  JWT: python-jose with HS256. Every signed token carries sub (owner id),
       iat, exp and type. decode_token() checks signature, expiry AND type,
       so a refresh token can never be replayed as a reset-password token.

  Persistence: access tokens are stateless (signature + expiry only). Every
       other kind is also written to the TokenStore, and verify_token()
       requires the row to still exist -- that is how logout, rotation and
       single-use reset / verify links revoke a token whose signature is
       still valid.

  OTP: secrets.randbelow(900000) + 100000 -- uniform over exactly the 900000
       six-digit values, from the OS CSPRNG. Stored as a plain row with no
       signature; verify_code() checks owner, value and the row's expiry.

  Passwords: bcrypt directly (no passlib wrapper). _DUMMY_HASH enables timing
       equalization in AuthService.login() so response time does not reveal
       whether an email is registered [C1].

Layer rule: no imports from api/ or workouts/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken, TokenExpired, TokenNotFound
from auth.models import AuthTokens, IssuedToken, Token, TokenKind
from core.config import Settings, get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import TokenStore

logger = logging.getLogger("fittrack.auth")

_ALGORITHM = "HS256"

_OTP_LOW = 100000
_OTP_SPAN = 900000

_PASSWORD_ALPHABET = string.ascii_letters + string.digits

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input past 72 bytes; the API layer caps passwords at
    128 characters and the placeholder passwords are 10.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def password_matches(user: User, plain: str) -> bool:
    return verify_password(plain, user.hashed_password)


def generate_password(length: int = 10) -> str:
    """Random letters+digits placeholder for accounts created through Google."""
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


# Timing equalization dummy hash [C1]. Computed once at module load.
_DUMMY_HASH: str = hash_password("fittrack_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def generate_token(user_id: str, expires: datetime, kind: TokenKind, secret: str | None = None) -> str:
    """Sign {sub, iat, exp, type, jti} with HS256. No side effects.

    jti makes two tokens minted for the same owner in the same second
    distinct strings; without it a rotated refresh token could equal its
    predecessor and the consumed value would verify again.
    """
    payload = {
        "sub": user_id,
        "iat": int(datetime.now(timezone.utc).timestamp()),
        "exp": int(expires.timestamp()),
        "type": kind.value,
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, secret or get_settings().secret_key, algorithm=_ALGORITHM)


def decode_token(token: str, kind: TokenKind, secret: str | None = None) -> dict:
    """Verify signature, expiry and kind. Raises InvalidToken on any failure."""
    try:
        payload = jwt.decode(token, secret or get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc
    if payload.get("type") != kind.value or not payload.get("sub"):
        raise InvalidToken("token kind mismatch")
    return payload


# ---------------------------------------------------------------------------
# Store-bound issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints, persists and verifies tokens against a TokenStore.

    TTLs come from Settings; expiry is always now + a calendar duration
    (minutes or days) in UTC.
    """

    def __init__(self, store: TokenStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    @staticmethod
    def _expires_in(**duration: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(**duration)

    def save_token(
        self,
        token: str,
        user_id: str,
        expires: datetime,
        kind: TokenKind,
        blacklisted: bool = False,
    ) -> Token:
        return self.store.create(
            Token(token=token, user_id=user_id, type=kind.value, expires=expires, blacklisted=blacklisted)
        )

    def verify_token(self, token: str, kind: TokenKind) -> Token:
        """Check the signature, then require a live, non-blacklisted row for the same owner."""
        payload = decode_token(token, kind, self.settings.secret_key)
        record = self.store.find_one(token, kind, user_id=payload["sub"], blacklisted=False)
        if record is None:
            raise TokenNotFound()
        return record

    def verify_code(self, user_id: str, code: str | int, kind: TokenKind) -> Token:
        """Look up an opaque code row. No signature is involved."""
        record = self.store.find_one(str(code), kind, user_id=user_id, blacklisted=False)
        if record is None:
            raise TokenNotFound()
        if record.expires <= datetime.now(timezone.utc):
            raise TokenExpired()
        return record

    def generate_auth_tokens(self, user: User) -> AuthTokens:
        """Issue an access token (not stored) and a refresh token (stored)."""
        access_expires = self._expires_in(minutes=self.settings.access_expiration_minutes)
        access_token = generate_token(user.id, access_expires, TokenKind.ACCESS, self.settings.secret_key)

        refresh_expires = self._expires_in(days=self.settings.refresh_expiration_days)
        refresh_token = generate_token(user.id, refresh_expires, TokenKind.REFRESH, self.settings.secret_key)
        self.save_token(refresh_token, user.id, refresh_expires, TokenKind.REFRESH)

        return AuthTokens(
            access=IssuedToken(token=access_token, expires=access_expires),
            refresh=IssuedToken(token=refresh_token, expires=refresh_expires),
        )

    def generate_reset_password_token(self, user: User) -> str:
        expires = self._expires_in(minutes=self.settings.reset_password_expiration_minutes)
        token = generate_token(user.id, expires, TokenKind.RESET_PASSWORD, self.settings.secret_key)
        self.save_token(token, user.id, expires, TokenKind.RESET_PASSWORD)
        return token

    def generate_verify_email_token(self, user: User) -> str:
        expires = self._expires_in(minutes=self.settings.verify_email_expiration_minutes)
        token = generate_token(user.id, expires, TokenKind.VERIFY_EMAIL, self.settings.secret_key)
        self.save_token(token, user.id, expires, TokenKind.VERIFY_EMAIL)
        return token

    def generate_user_verify_otp(self, user: User) -> int:
        """Issue a 6-digit code, overwriting the user's existing OTP row if there is one."""
        code = _OTP_LOW + secrets.randbelow(_OTP_SPAN)
        expires = self._expires_in(minutes=self.settings.verify_otp_expiration_minutes)
        self.store.upsert_otp(user.id, str(code), expires)
        logger.info("Verification code issued for user %s", user.id)
        return code
