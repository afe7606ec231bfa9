"""
api/routes/v1/workouts.py -- Workout REST endpoints.

Routes:
  POST /api/v1/workouts -- create a workout for the current user (201)
  GET  /api/v1/workouts -- list the current user's workouts (name, group, sortBy, limit, page)

Ownership comes from the access token, never from the body or query string:
both routes pass current_user.id to WorkoutStore.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import WorkoutCreate, WorkoutPage, WorkoutResponse
from auth.dependencies import get_current_user
from auth.models import User
from core.config import get_settings
from core.errors import BadRequest
from workouts.models import Workout
from workouts.store import WorkoutStore

router = APIRouter(prefix="/workouts")

_DUPLICATE = "Workout name already exist"


@router.post("", response_model=WorkoutResponse, status_code=201)
def create_workout(
    request: Request,
    body: WorkoutCreate,
    current_user: User = Depends(get_current_user),
) -> WorkoutResponse:
    """Create a workout. Names are unique per user; a missing picture gets the default one."""
    store: WorkoutStore = request.app.state.workout_store
    if store.get_by_name(current_user.id, body.name) is not None:
        raise BadRequest(_DUPLICATE)

    workout = Workout(
        name=body.name,
        group=body.group,
        user_id=current_user.id,
        picture_url=body.picture_url or f"{get_settings().public_url}/workouts/default_workout.png",
        description=body.description,
    )
    try:
        workout_id = store.create_workout(workout)
    except IntegrityError:
        # Lost a race with a concurrent create of the same name.
        raise BadRequest(_DUPLICATE) from None
    return WorkoutResponse.from_workout(store.get_workout(workout_id))


@router.get("", response_model=WorkoutPage)
def list_workouts(
    request: Request,
    name: Optional[str] = None,
    group: Optional[int] = None,
    sort_by: Optional[str] = Query(default=None, alias="sortBy"),
    limit: int = Query(default=10, ge=1, le=100),
    page: int = Query(default=1, ge=1),
    current_user: User = Depends(get_current_user),
) -> WorkoutPage:
    store: WorkoutStore = request.app.state.workout_store
    result = store.query_workouts(
        current_user.id,
        name=name,
        group=group,
        sort_by=sort_by,
        limit=limit,
        page=page,
    )
    return WorkoutPage.from_page(result)
