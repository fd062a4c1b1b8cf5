"""
core/database.py -- SQLAlchemy engine construction and datetime helpers.

One Engine per process, built in the application lifespan (or by the CLI) and
handed to every store constructor. Stores never create their own engines.

SQLite specifics:
  check_same_thread=False -- FastAPI runs sync handlers in a thread pool, so a
      pooled connection may be used from a thread other than its creator.
  WAL journal mode -- readers proceed without blocking during writes. Set per
      connection because PRAGMAs are not inherited by new pooled connections.

Datetimes are stored as naive UTC (SQLite has no timezone support) and read
back as aware UTC. to_db() / from_db() are the only place that conversion
happens.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create the shared Engine for db_url.

    Works for any SQLAlchemy URL; SQLite URLs get the thread and WAL tweaks.
    In-memory SQLite URLs skip WAL (not supported there).
    """
    connect_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if is_sqlite and "memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC for storage. Naive input is taken as UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db(value: datetime | None) -> datetime | None:
    """Attach UTC to a naive datetime read from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
