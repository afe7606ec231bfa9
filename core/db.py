"""
core/db.py -- Engine construction and the store-call guard.

Every repository (auth/store.py, workouts/store.py) builds its engine with
make_engine() and runs each query inside guarded(). Two things follow:

  Bounded waits: SQLite gets a busy timeout and other backends get a pool
      checkout timeout, both from Settings.store_timeout_seconds. A store call
      never blocks indefinitely.

  One failure shape: OperationalError (locked DB, lost connection, busy
      timeout) and pool TimeoutError become StoreIOError, which the API maps
      to 503 + Retry-After. IntegrityError is NOT translated -- callers use it
      as a uniqueness signal (duplicate email, duplicate workout name).

Layer rule: core/ is the kernel. No imports from api/, auth/, or workouts/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from core.errors import StoreIOError

logger = logging.getLogger("fittrack.db")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float) -> Engine:
    """Create an engine whose every wait is bounded by `timeout` seconds."""
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_wal_mode)
        return engine
    return create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)


@contextmanager
def guarded(engine: Engine) -> Iterator[Connection]:
    """Yield a connection; translate connectivity and timeout failures to StoreIOError."""
    try:
        with engine.connect() as conn:
            yield conn
    except (OperationalError, PoolTimeoutError) as exc:
        logger.warning("Store call failed: %s", exc.__class__.__name__)
        raise StoreIOError("The data store is temporarily unavailable. Retry the request.") from exc
