"""
workouts/models.py -- Domain dataclass for workouts.

Pure data container with zero logic. Duplicate-name checks, default
pictures and filtering live in workouts/store.py and the route.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Workout:
    """A named exercise owned by one user.

    group is the muscle-group number the client picks from its own catalogue.
    user_id always comes from the authenticated request, never the body.

    id is None before the record is written to the database.
    """

    name: str
    group: int
    user_id: str
    picture_url: Optional[str] = None
    description: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
