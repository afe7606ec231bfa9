"""
workouts/store.py -- SQLAlchemy-backed persistence layer for workouts.

Uses SQLAlchemy Core (not ORM) so the Workout dataclass remains the
authoritative domain representation.

Pattern: Repository + Data Mapper. WorkoutStore is the repository,
_row_to_workout the mapper. Route handlers never touch SQL directly.

Ownership: every method takes the owner's user_id explicitly. The route
passes the id of the authenticated user from the request, so one user can
never list or collide with another user's workouts.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = WorkoutStore()
    workout_id = store.create_workout(Workout(name="Squat", group=2, user_id=uid))
    page = store.query_workouts(uid, name="squ", sort_by="name:asc", limit=10, page=1)
    store.close()
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import guarded, make_engine
from core.query import Page, like_filters, paginate
from workouts.models import Workout

logger = logging.getLogger("fittrack.workouts")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_workouts = Table(
    "workouts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("group", Integer, nullable=False),
    Column("picture_url", Text),
    Column("description", Text),
    Column("user_id", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "name", name="uq_workout_owner_name"),
)

_SORTABLE = {
    "name": _workouts.c.name,
    "group": _workouts.c.group,
    "createdAt": _workouts.c.created_at,
    "created_at": _workouts.c.created_at,
    "updatedAt": _workouts.c.updated_at,
    "updated_at": _workouts.c.updated_at,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class WorkoutStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(db_url or settings.database_url, settings.store_timeout_seconds)
        metadata.create_all(self.engine)

    def get_by_name(self, user_id: str, name: str) -> Optional[Workout]:
        """Return the owner's workout with exactly this name, or None."""
        with guarded(self.engine) as conn:
            row = conn.execute(
                _workouts.select().where((_workouts.c.user_id == user_id) & (_workouts.c.name == name))
            ).fetchone()
        return _row_to_workout(row) if row is not None else None

    def get_workout(self, workout_id: int) -> Optional[Workout]:
        with guarded(self.engine) as conn:
            row = conn.execute(_workouts.select().where(_workouts.c.id == workout_id)).fetchone()
        return _row_to_workout(row) if row is not None else None

    def create_workout(self, workout: Workout) -> int:
        """Insert a workout and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the owner already has a
        workout with this name (UNIQUE(user_id, name)).
        """
        now = _now_iso()
        with guarded(self.engine) as conn:
            result = conn.execute(
                _workouts.insert().values(
                    name=workout.name,
                    group=workout.group,
                    picture_url=workout.picture_url,
                    description=workout.description,
                    user_id=workout.user_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return result.inserted_primary_key[0]

    def query_workouts(
        self,
        user_id: str,
        name: Optional[str] = None,
        group: Optional[int] = None,
        sort_by: Optional[str] = None,
        limit: Optional[int] = None,
        page: Optional[int] = None,
    ) -> Page:
        """Return one page of the owner's workouts.

        name is a case-insensitive substring match; group is exact.
        """
        where = [_workouts.c.user_id == user_id]
        where.extend(like_filters({"name": _workouts.c.name}, {"name": name}))
        if group is not None:
            where.append(_workouts.c.group == group)
        with guarded(self.engine) as conn:
            return paginate(
                conn,
                _workouts,
                where,
                _row_to_workout,
                sortable=_SORTABLE,
                default_sort=_workouts.c.created_at,
                sort_by=sort_by,
                limit=limit,
                page=page,
            )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_workout(row) -> Workout:
    return Workout(
        id=row.id,
        name=row.name,
        group=row.group,
        picture_url=row.picture_url,
        description=row.description,
        user_id=row.user_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
