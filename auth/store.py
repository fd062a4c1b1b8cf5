"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as vplan/store.py).
TokenStore and CredentialStore are the repositories; _row_to_* are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Token upsert:
  apitoken.ident carries a UNIQUE constraint -- at most one live token per
  identity is a database invariant, not a code convention. Renewal is a
  single atomic statement where the dialect supports it:
    sqlite / postgresql  INSERT ... ON CONFLICT (ident) DO UPDATE
    mysql / mariadb      INSERT ... ON DUPLICATE KEY UPDATE
  Other dialects fall back to UPDATE, then INSERT when no row matched. If
  that INSERT trips the unique constraint, a concurrent call created the row
  between our two statements; the UPDATE is retried once.

Layer rule: no imports from api/, web/ or vplan/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Credential, TokenRecord
from core.database import from_db, to_db, utcnow
from core.errors import StorageError

logger = logging.getLogger("vplan.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_apitoken = Table(
    "apitoken",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ident", String(255), nullable=False, unique=True),
    Column("token", String(128), nullable=False, index=True),
    Column("expire", DateTime, nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("group", String(100), nullable=False, server_default=""),
    Column("created_at", DateTime, nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_UPSERT_DIALECTS = {"sqlite", "postgresql", "mysql", "mariadb"}


# ---------------------------------------------------------------------------
# Token repository
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for API token records.

    Usage:
        store = TokenStore(engine)
        store.set_user_api_token("abc123", "f00...", expire)
        record = store.get_user_api_token("abc123")
        ident, expire = store.get_api_token("f00...")
        store.delete_user_api_token("abc123")

    Every method raises StorageError when the database call fails. "Not found"
    is never an error -- lookups return None.
    """

    def __init__(self, engine: Engine, native_upsert: bool | None = None) -> None:
        self.engine = engine
        if native_upsert is None:
            native_upsert = engine.dialect.name in _UPSERT_DIALECTS
        self._native_upsert = native_upsert
        self.setup()

    def setup(self) -> None:
        """Create the apitoken table if it does not exist yet."""
        try:
            _metadata.create_all(self.engine, tables=[_apitoken])
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def get_api_token(self, token: str) -> tuple[str, datetime] | None:
        """Return (ident, expire) for a token value, or None if no row holds it.

        Expiry is NOT checked here; the caller compares expire to now.
        """
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(_apitoken.c.ident, _apitoken.c.expire).where(_apitoken.c.token == token)
                ).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        if row is None or not row.ident:
            return None
        return row.ident, from_db(row.expire)

    def get_user_api_token(self, ident: str) -> TokenRecord | None:
        """Return the token record owned by ident, or None."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_apitoken.select().where(_apitoken.c.ident == ident)).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return _row_to_token(row) if row is not None else None

    def set_user_api_token(self, ident: str, token: str, expire: datetime) -> None:
        """Create or replace the token record for ident."""
        values = {"ident": ident, "token": token, "expire": to_db(expire)}
        try:
            if self._native_upsert:
                self._upsert(values)
            else:
                self._update_then_insert(values)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def delete_user_api_token(self, ident: str) -> bool:
        """Remove ident's token. Returns True if a row was deleted."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_apitoken.delete().where(_apitoken.c.ident == ident))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount > 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every token whose expire lies in the past. Returns rows removed."""
        cutoff = to_db(now or utcnow())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_apitoken.delete().where(_apitoken.c.expire < cutoff))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount

    def count(self) -> int:
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.count()).select_from(_apitoken)).scalar() or 0
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Upsert strategies
    # ------------------------------------------------------------------

    def _upsert(self, values: dict) -> None:
        dialect = self.engine.dialect.name
        if dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(_apitoken).values(**values)
            stmt = stmt.on_duplicate_key_update(token=stmt.inserted.token, expire=stmt.inserted.expire)
        else:
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(_apitoken).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[_apitoken.c.ident],
                set_={"token": stmt.excluded.token, "expire": stmt.excluded.expire},
            )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def _update_then_insert(self, values: dict) -> None:
        with self.engine.begin() as conn:
            if self._update(conn, values):
                return
        try:
            with self.engine.begin() as conn:
                conn.execute(_apitoken.insert().values(**values))
        except IntegrityError as exc:
            logger.info("Concurrent token renewal for ident %s, retrying update", values["ident"][:12])
            with self.engine.begin() as conn:
                if not self._update(conn, values):
                    raise StorageError(str(exc)) from exc

    @staticmethod
    def _update(conn: Connection, values: dict) -> bool:
        result = conn.execute(
            _apitoken.update()
            .where(_apitoken.c.ident == values["ident"])
            .values(token=values["token"], expire=values["expire"])
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Credential repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for local username/password credentials.

    Usage:
        store = CredentialStore(engine)
        store.create_user(Credential(username="mueller", hashed_password=hash_password("secret"), group="teachers"))
        cred = store.get_by_username("mueller")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.setup()

    def setup(self) -> None:
        """Create the users table if it does not exist yet."""
        try:
            _metadata.create_all(self.engine, tables=[_users])
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def create_user(self, credential: Credential) -> int:
        """Insert a new credential and return its database ID.

        Raises StorageError if the username already exists.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=credential.username,
                        hashed_password=credential.hashed_password,
                        group=credential.group,
                        created_at=to_db(utcnow()),
                        is_active=1 if credential.is_active else 0,
                    )
                )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> Credential | None:
        """Look up a credential by exact username (case-sensitive)."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return _row_to_credential(row) if row is not None else None

    def set_password(self, username: str, hashed_password: str) -> bool:
        return self._update(username, hashed_password=hashed_password)

    def set_active(self, username: str, is_active: bool) -> bool:
        return self._update(username, is_active=1 if is_active else 0)

    def _update(self, username: str, **fields) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.update().where(_users.c.username == username).values(**fields))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_token(row) -> TokenRecord:
    return TokenRecord(ident=row.ident, token=row.token, expire=from_db(row.expire))


def _row_to_credential(row) -> Credential:
    return Credential(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        group=row._mapping["group"] or "",
        created_at=from_db(row.created_at),
        is_active=bool(row.is_active),
    )
