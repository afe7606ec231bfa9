"""
core/errors.py -- Typed error taxonomy shared by every layer.

Every failure that should reach an API client is an AppError carrying a
machine-readable kind and a human-readable message. Nothing below the HTTP
layer recovers from these; api/main.py owns the single kind -> status table.

StoreIOError and UpstreamIOError are the retryable kinds: the store or the
identity provider did not answer within the configured timeout. The core
never retries -- that is the caller's decision.

Layer rule: core/ is the kernel. No imports from api/, auth/, or workouts/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    unauthorized = "unauthorized"
    forbidden = "forbidden"
    not_found = "not_found"
    bad_request = "bad_request"
    external_verification_failed = "external_verification_failed"
    store_io = "store_io"
    upstream_io = "upstream_io"


class AppError(Exception):
    """Base class for typed, client-facing failures."""

    kind: ErrorKind = ErrorKind.bad_request
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class Unauthorized(AppError):
    kind = ErrorKind.unauthorized


class Forbidden(AppError):
    kind = ErrorKind.forbidden


class NotFound(AppError):
    kind = ErrorKind.not_found


class BadRequest(AppError):
    kind = ErrorKind.bad_request


class ExternalVerificationFailed(AppError):
    kind = ErrorKind.external_verification_failed


class StoreIOError(AppError):
    """The document store timed out or could not be reached."""

    kind = ErrorKind.store_io
    retryable = True


class UpstreamIOError(AppError):
    """The identity provider timed out or could not be reached."""

    kind = ErrorKind.upstream_io
    retryable = True
