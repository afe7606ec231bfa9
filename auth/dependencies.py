"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as `Authorization: Bearer <jwt>`. They are stateless:
signature, expiry and type=access are checked, then the owner is loaded so
a deleted account stops working immediately.

The resolved User is the request-scoped context. Routes receive it as a
parameter and pass user.id to stores explicitly -- there is no process-wide
"current user".

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises Unauthorized (401) if unauthenticated.
require_admin() wraps get_current_user() and raises Forbidden (403) if not admin.

Layer rule: no imports from workouts/.
  auth/dependencies.py may import from fastapi (for Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import InvalidToken
from auth.models import TokenKind, User
from auth.tokens import decode_token
from core.errors import Forbidden, Unauthorized


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via its Bearer access token.

    Returns None for a missing, malformed, expired or non-access token, or a
    deleted owner. A store outage still propagates as StoreIOError.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = decode_token(auth_header[7:], TokenKind.ACCESS)
    except InvalidToken:
        return None
    return request.app.state.user_store.get_by_id(payload["sub"])


def get_current_user(request: Request) -> User:
    """Require authentication. Raises Unauthorized (401) if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthorized("Please authenticate")
    return user


def require_admin(request: Request) -> User:
    """Require admin role. Raises Unauthorized (401) if unauthenticated, Forbidden (403) if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise Forbidden("Forbidden")
    return user
