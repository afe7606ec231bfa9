"""
api/routes/v1/users.py -- User management REST endpoints (admin only).

Routes:
  POST   /api/v1/users            -- create a user
  GET    /api/v1/users            -- list users (filter name/role; sortBy, limit, page)
  GET    /api/v1/users/{user_id}  -- fetch one user
  PATCH  /api/v1/users/{user_id}  -- update profile fields, role or password
  DELETE /api/v1/users/{user_id}  -- delete a user and their tokens

Security:
  Every route depends on require_admin (401 unauthenticated, 403 non-admin).
  [M4] PATCH and DELETE block an admin from demoting or deleting themselves.
  Password changes are hashed here; hashes never leave the store.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.exc import IntegrityError

from api.models import RoleEnum, UserCreate, UserPage, UserPatch, UserResponse
from auth.dependencies import require_admin
from auth.models import User, UserRank, UserType
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import hash_password
from core.errors import BadRequest, NotFound

router = APIRouter(prefix="/users")


def _load(user_store: UserStore, user_id: str) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a user account directly, bypassing the emailed code."""
    auth_service: AuthService = request.app.state.auth_service
    created = auth_service.create_user(
        User(
            email=body.email,
            hashed_password=hash_password(body.password),
            name=body.name,
            first_name=body.first_name,
            last_name=body.last_name,
            picture_url=body.picture_url,
            type=UserType.EMAIL.value,
            is_email_verified=body.is_email_verified,
            rank=UserRank.BEGINNER.value,
            role=body.role.value,
        )
    )
    return UserResponse.from_user(created)


@router.get("", response_model=UserPage)
def list_users(
    request: Request,
    name: Optional[str] = None,
    role: Optional[RoleEnum] = None,
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    limit: int = Query(default=10, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    current_user: User = Depends(require_admin),
) -> UserPage:
    user_store: UserStore = request.app.state.user_store
    result = user_store.list_users(
        name=name,
        role=role.value if role else None,
        sort_by=sort_by,
        limit=limit,
        page=page,
    )
    return UserPage.from_page(result)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    return UserResponse.from_user(_load(request.app.state.user_store, user_id))


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Update a user. Only the fields present in the body change."""
    user_store: UserStore = request.app.state.user_store
    target = _load(user_store, user_id)

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise BadRequest("No fields to update")
    if "password" in updates:
        updates["hashed_password"] = hash_password(updates.pop("password"))
    for key in ("role", "rank"):
        if key in updates:
            updates[key] = updates[key].value
    if updates.get("role") == "user" and target.id == current_user.id:
        # [M4] an admin cannot demote themselves
        raise BadRequest("You cannot change your own role")
    if "email" in updates and updates["email"] != target.email:
        if user_store.get_by_email(updates["email"]) is not None:
            raise BadRequest("Email already taken")

    try:
        updated = user_store.update_user(user_id, **updates)
    except IntegrityError:
        raise BadRequest("Email already taken") from None
    if updated is None:
        raise NotFound("User not found")
    return UserResponse.from_user(updated)


@router.delete("/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    if user_id == current_user.id:
        # [M4]
        raise BadRequest("You cannot delete your own account")
    if not user_store.delete_user(user_id):
        raise NotFound("User not found")
    return Response(status_code=204)
