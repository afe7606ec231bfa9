"""
auth/errors.py -- Internal failure causes and the single place they collapse.

Token verification can fail for many reasons: bad signature, expired, wrong
kind, row already consumed, owner deleted. Telling the client which one
happened helps an attacker (e.g. "this reset link was valid but used" vs
"this reset link never existed"). So the service keeps the precise cause
internally -- for logs and tests -- and reports one opaque external kind.

  Cause          -- every internal reason a flow can fail.
  EXTERNAL_KIND  -- the complete cause -> ErrorKind table. Tests assert it
                    directly; adding a Cause without a row is a KeyError.
  collapse()     -- turns (cause, per-flow message) into the AppError to raise.

Login keeps BAD_CREDENTIALS and EMAIL_NOT_VERIFIED as distinct causes even
though both map to the same kind and message.

Layer rule: no imports from api/ or workouts/.
"""

from __future__ import annotations

import logging
from enum import Enum

from core.errors import (
    AppError,
    BadRequest,
    ErrorKind,
    ExternalVerificationFailed,
    Forbidden,
    NotFound,
    Unauthorized,
)

logger = logging.getLogger("fittrack.auth")


class Cause(str, Enum):
    BAD_CREDENTIALS = "bad_credentials"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    INVALID_TOKEN = "invalid_token"
    TOKEN_NOT_FOUND = "token_not_found"
    TOKEN_EXPIRED = "token_expired"
    OWNER_NOT_FOUND = "owner_not_found"
    UNKNOWN_REFRESH_TOKEN = "unknown_refresh_token"
    UNKNOWN_EMAIL = "unknown_email"
    PROVIDER_REJECTED = "provider_rejected"


EXTERNAL_KIND: dict[Cause, ErrorKind] = {
    Cause.BAD_CREDENTIALS: ErrorKind.unauthorized,
    Cause.EMAIL_NOT_VERIFIED: ErrorKind.unauthorized,
    Cause.INVALID_TOKEN: ErrorKind.unauthorized,
    Cause.TOKEN_NOT_FOUND: ErrorKind.unauthorized,
    Cause.TOKEN_EXPIRED: ErrorKind.unauthorized,
    Cause.OWNER_NOT_FOUND: ErrorKind.unauthorized,
    Cause.UNKNOWN_REFRESH_TOKEN: ErrorKind.not_found,
    Cause.UNKNOWN_EMAIL: ErrorKind.not_found,
    Cause.PROVIDER_REJECTED: ErrorKind.external_verification_failed,
}

_ERROR_CLASS: dict[ErrorKind, type[AppError]] = {
    ErrorKind.unauthorized: Unauthorized,
    ErrorKind.forbidden: Forbidden,
    ErrorKind.not_found: NotFound,
    ErrorKind.bad_request: BadRequest,
    ErrorKind.external_verification_failed: ExternalVerificationFailed,
}


# ---------------------------------------------------------------------------
# Internal exceptions -- never leave auth/
# ---------------------------------------------------------------------------


class TokenVerificationError(Exception):
    """Raised by the token issuer; carries the precise Cause."""

    cause: Cause = Cause.INVALID_TOKEN

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.cause.value)


class InvalidToken(TokenVerificationError):
    cause = Cause.INVALID_TOKEN


class TokenNotFound(TokenVerificationError):
    cause = Cause.TOKEN_NOT_FOUND


class TokenExpired(TokenVerificationError):
    cause = Cause.TOKEN_EXPIRED


class OwnerNotFound(TokenVerificationError):
    cause = Cause.OWNER_NOT_FOUND


# ---------------------------------------------------------------------------
# Collapsing
# ---------------------------------------------------------------------------


def collapse(cause: Cause, message: str) -> AppError:
    """Return the client-facing error for an internal cause.

    The cause is logged here and nowhere else, so every collapsed failure
    leaves exactly one audit line.
    """
    kind = EXTERNAL_KIND[cause]
    logger.info("Auth failure collapsed: cause=%s kind=%s", cause.value, kind.value)
    error = _ERROR_CLASS[kind](message)
    error.cause = cause
    return error
