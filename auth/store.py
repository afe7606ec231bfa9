"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as workouts/store.py).
UserStore is the credential store and TokenStore the token store;
_row_to_user / _row_to_token are the mappers. Service and route code never
touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Every call runs inside core.db.guarded(), so a locked or unreachable
  database surfaces as StoreIOError after Settings.store_timeout_seconds
  instead of hanging the request.

Concurrency:
  Each method is one statement (or one insert-then-update fallback) and
  relies on per-statement atomicity only. TokenStore.delete_one() is the
  compare-and-delete primitive refresh rotation needs: two concurrent
  refreshes both pass signature checks, but only one DELETE reports a row.

  The "one OTP row per user" rule is backed by a partial unique index on
  tokens(user_id) WHERE type = 'verify_otp'. upsert_otp() tries the in-place
  update first and inserts only when nothing matched; an insert that loses a
  race to a concurrent insert retries as an update.

Layer rule: no imports from api/ or workouts/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Token, TokenKind, User
from core.config import get_settings
from core.db import guarded, make_engine
from core.query import Page, like_filters, paginate

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("picture_url", Text),
    Column("type", String(20), nullable=False, server_default="email"),
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("rank", String(30), nullable=False, server_default="beginner"),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("created_at", String(32), nullable=False),
)

_tokens = Table(
    "tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False),
    Column("user_id", String(32), nullable=False),
    Column("type", String(20), nullable=False),
    Column("expires", String(40), nullable=False),  # ISO 8601, UTC
    Column("blacklisted", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

Index("ix_tokens_token_type", _tokens.c.token, _tokens.c.type)
Index("ix_tokens_user_type", _tokens.c.user_id, _tokens.c.type)
Index(
    "uq_tokens_otp_owner",
    _tokens.c.user_id,
    unique=True,
    sqlite_where=_tokens.c.type == TokenKind.VERIFY_OTP.value,
    postgresql_where=_tokens.c.type == TokenKind.VERIFY_OTP.value,
)

# Public sort keys -> columns. Accepts both the camelCase names clients send
# and the snake_case column names.
_USER_SORTABLE = {
    "name": _users.c.name,
    "email": _users.c.email,
    "role": _users.c.role,
    "rank": _users.c.rank,
    "createdAt": _users.c.created_at,
    "created_at": _users.c.created_at,
}

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _open_engine(db_url: str | None) -> Engine:
    settings = get_settings()
    engine = make_engine(db_url or settings.database_url, settings.store_timeout_seconds)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@b.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    # Fields update_user() accepts. Anything else is a programming error.
    _MUTABLE_FIELDS: set = {
        "email",
        "hashed_password",
        "name",
        "first_name",
        "last_name",
        "picture_url",
        "is_email_verified",
        "rank",
        "role",
    }

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = _open_engine(db_url)

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken.
        Callers treat that as the authoritative duplicate check -- a prior
        get_by_email() is only a fast path.
        """
        user_id = uuid.uuid4().hex
        with guarded(self.engine) as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    name=user.name,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    picture_url=user.picture_url,
                    type=user.type,
                    is_email_verified=1 if user.is_email_verified else 0,
                    rank=user.rank,
                    role=user.role,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return user_id

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with guarded(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with guarded(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update mutable fields and return the fresh record, or None if user_id is unknown.

        is_email_verified must be passed as bool; it is stored as 0/1.
        Raises IntegrityError when an email change collides with another user.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_email_verified" in fields:
            fields["is_email_verified"] = 1 if fields["is_email_verified"] else 0
        with guarded(self.engine) as conn:
            if fields:
                conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
                conn.commit()
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(
        self,
        name: str | None = None,
        role: str | None = None,
        sort_by: str | None = None,
        limit: int | None = None,
        page: int | None = None,
    ) -> Page:
        """Return one page of users. name is a case-insensitive substring match, role is exact."""
        where = like_filters({"name": _users.c.name}, {"name": name})
        if role:
            where.append(_users.c.role == role)
        with guarded(self.engine) as conn:
            return paginate(
                conn,
                _users,
                where,
                _row_to_user,
                sortable=_USER_SORTABLE,
                default_sort=_users.c.created_at,
                sort_by=sort_by,
                limit=limit,
                page=page,
            )

    def delete_user(self, user_id: str) -> bool:
        """Delete a user and every token row they own. Returns False if not found."""
        with guarded(self.engine) as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.execute(_tokens.delete().where(_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for persisted Token rows (everything except access tokens)."""

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = _open_engine(db_url)

    def create(self, token: Token) -> Token:
        """Insert a token row and return it with id and created_at filled in."""
        created_at = _now_iso()
        with guarded(self.engine) as conn:
            result = conn.execute(
                _tokens.insert().values(
                    token=token.token,
                    user_id=token.user_id,
                    type=token.type,
                    expires=token.expires.isoformat(),
                    blacklisted=1 if token.blacklisted else 0,
                    created_at=created_at,
                )
            )
            conn.commit()
        token.id = result.inserted_primary_key[0]
        token.created_at = created_at
        return token

    def find_one(
        self,
        token: str,
        kind: TokenKind,
        user_id: str | None = None,
        blacklisted: bool = False,
    ) -> Token | None:
        """Find a row by (value, kind[, owner], blacklisted). Returns None if absent."""
        stmt = _tokens.select().where(
            (_tokens.c.token == token) & (_tokens.c.type == kind.value) & (_tokens.c.blacklisted == int(blacklisted))
        )
        if user_id is not None:
            stmt = stmt.where(_tokens.c.user_id == user_id)
        with guarded(self.engine) as conn:
            row = conn.execute(stmt.limit(1)).fetchone()
        return _row_to_token(row) if row is not None else None

    def find_by_owner(self, user_id: str, kind: TokenKind) -> Token | None:
        """Return the first row of `kind` owned by `user_id`, or None."""
        with guarded(self.engine) as conn:
            row = conn.execute(
                _tokens.select().where((_tokens.c.user_id == user_id) & (_tokens.c.type == kind.value)).limit(1)
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def upsert_otp(self, user_id: str, code: str, expires: datetime) -> Token:
        """Overwrite the owner's verify_otp row in place, inserting it if none exists.

        Leaves exactly one verify_otp row for the owner either way.
        """
        if self._update_otp(user_id, code, expires):
            return self.find_by_owner(user_id, TokenKind.VERIFY_OTP)
        try:
            return self.create(Token(token=code, user_id=user_id, type=TokenKind.VERIFY_OTP.value, expires=expires))
        except IntegrityError:
            # A concurrent issuance inserted first; the unique index kept it to one row.
            self._update_otp(user_id, code, expires)
            return self.find_by_owner(user_id, TokenKind.VERIFY_OTP)

    def _update_otp(self, user_id: str, code: str, expires: datetime) -> bool:
        with guarded(self.engine) as conn:
            result = conn.execute(
                _tokens.update()
                .where((_tokens.c.user_id == user_id) & (_tokens.c.type == TokenKind.VERIFY_OTP.value))
                .values(token=code, expires=expires.isoformat(), blacklisted=0)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_many(self, user_id: str, kind: TokenKind) -> int:
        """Delete every row of `kind` owned by `user_id`. Returns the number removed."""
        with guarded(self.engine) as conn:
            result = conn.execute(
                _tokens.delete().where((_tokens.c.user_id == user_id) & (_tokens.c.type == kind.value))
            )
            conn.commit()
        return result.rowcount

    def delete_one(self, token: Token) -> bool:
        """Compare-and-delete a single row. Returns False if another caller removed it first."""
        with guarded(self.engine) as conn:
            result = conn.execute(_tokens.delete().where(_tokens.c.id == token.id))
            conn.commit()
        return result.rowcount > 0

    def count(self, user_id: str, kind: TokenKind) -> int:
        """Number of rows of `kind` owned by `user_id`.

        Test helper: no request path calls it. The suite uses it to assert
        single-use consumption and the one-OTP-per-owner rule.
        """
        with guarded(self.engine) as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_tokens)
                .where((_tokens.c.user_id == user_id) & (_tokens.c.type == kind.value))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        name=row.name,
        first_name=row.first_name,
        last_name=row.last_name,
        picture_url=row.picture_url,
        type=row.type,
        is_email_verified=bool(row.is_email_verified),
        rank=row.rank,
        role=row.role,
        created_at=row.created_at,
    )


def _row_to_token(row) -> Token:
    expires = datetime.fromisoformat(row.expires)
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return Token(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        type=row.type,
        expires=expires,
        blacklisted=bool(row.blacklisted),
        created_at=row.created_at,
    )
