"""
vplan/store.py -- SQLAlchemy-backed persistence layer for timetable and news data.

Uses SQLAlchemy Core (not ORM) so the dataclasses in vplan/models.py remain
the authoritative domain representation. Swapping SQLite for MySQL or
PostgreSQL is a connection string change.

Pattern: Repository + Data Mapper. VPlanStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Rows are soft-deleted (deleted = 1) by the editing tools that feed these
tables; every read filters them out.

Partial failures: get_vplans() gathers entries with one query per plan. A
plan whose entry query or row mapping fails is logged and returned without
those entries; StorageError is raised only when nothing can be gathered at
all (the plan query fails, or every entry query fails).

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = VPlanStore(engine)
    plan_id = store.create_vplan(VPlan(date_for=..., date_edit=..., entries=[...]))
    plans = store.get_vplans("10a", datetime.now(timezone.utc))
    news = store.get_news(limit=10)
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.database import from_db, to_db
from core.errors import StorageError
from vplan.models import News, VPlan, VPlanEntry

logger = logging.getLogger("vplan.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_vplan = Table(
    "vplan",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("date_edit", DateTime, nullable=False),
    Column("date_for", DateTime, nullable=False, index=True),
    Column("block", String(32), nullable=False, server_default=""),
    Column("header", Text, nullable=False, server_default=""),
    Column("footer", Text, nullable=False, server_default=""),
    Column("deleted", Integer, nullable=False, server_default="0"),
)

_vplan_details = Table(
    "vplan_details",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vplan_id", Integer, nullable=False, index=True),
    Column("class", String(32), nullable=False),
    Column("time", String(32), nullable=False, server_default=""),
    Column("measures", Text, nullable=False, server_default=""),
    Column("responsible", String(255), nullable=False, server_default=""),
    Column("deleted", Integer, nullable=False, server_default="0"),
)

_news = Table(
    "news",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("date", DateTime, nullable=False, index=True),
    Column("headline", String(255), nullable=False),
    Column("short", Text, nullable=False, server_default=""),
    Column("story", Text, nullable=False, server_default=""),
    Column("deleted", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VPlanStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.setup()

    def setup(self) -> None:
        """Create the vplan, vplan_details and news tables if missing."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_vplans(self, class_name: str, timestamp: datetime) -> list[VPlan]:
        """Return plans whose date_for is at or after timestamp, oldest first.

        class_name filters the entries of each plan ("" = all classes). Plans
        with no matching entries are still returned, with an empty list.
        """
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _vplan.select()
                    .where((_vplan.c.date_for >= to_db(timestamp)) & (_vplan.c.deleted == 0))
                    .order_by(_vplan.c.date_for, _vplan.c.id)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

        vplans: list[VPlan] = []
        for row in rows:
            try:
                vplans.append(_row_to_vplan(row))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable vplan row %s: %s", row.id, exc)

        errors: list[str] = []
        for plan in vplans:
            try:
                plan.entries = self._get_entries(plan.id, class_name)
            except SQLAlchemyError as exc:
                errors.append(f"vplan {plan.id}: {exc}")

        if errors:
            if len(errors) == len(vplans):
                raise StorageError("; ".join(errors))
            logger.warning("Entries missing for %d of %d vplans: %s", len(errors), len(vplans), "; ".join(errors))
        return vplans

    def _get_entries(self, vplan_id: int, class_name: str) -> list[VPlanEntry]:
        query = _vplan_details.select().where((_vplan_details.c.vplan_id == vplan_id) & (_vplan_details.c.deleted == 0))
        if class_name:
            query = query.where(_vplan_details.c["class"] == class_name)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_vplan_details.c.id)).fetchall()

        entries: list[VPlanEntry] = []
        for row in rows:
            try:
                entries.append(_row_to_entry(row))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable vplan entry %s: %s", row.id, exc)
        return entries

    def get_news(self, limit: int = 10) -> list[News]:
        """Return the newest non-deleted news items, newest first."""
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _news.select().where(_news.c.deleted == 0).order_by(_news.c.date.desc(), _news.c.id.desc()).limit(limit)
                ).fetchall()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return [_row_to_news(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes (used by the CLI seeding path and tests)
    # ------------------------------------------------------------------

    def create_vplan(self, vplan: VPlan) -> int:
        """Insert a plan and its entries in one transaction. Returns the plan id."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _vplan.insert().values(
                        date_edit=to_db(vplan.date_edit),
                        date_for=to_db(vplan.date_for),
                        block=vplan.block,
                        header=vplan.header,
                        footer=vplan.footer,
                    )
                )
                vplan_id = result.inserted_primary_key[0]
                for entry in vplan.entries:
                    entry.vplan_id = vplan_id
                    conn.execute(_vplan_details.insert().values(**_entry_values(entry)))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return vplan_id

    def add_entry(self, entry: VPlanEntry) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_vplan_details.insert().values(**_entry_values(entry)))
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.inserted_primary_key[0]

    def delete_vplan(self, vplan_id: int) -> bool:
        """Soft-delete a plan. Returns True if a live plan was marked deleted."""
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _vplan.update().where((_vplan.c.id == vplan_id) & (_vplan.c.deleted == 0)).values(deleted=1)
                )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount > 0

    def create_news(self, news: News) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _news.insert().values(
                        date=to_db(news.date),
                        headline=news.headline,
                        short=news.short,
                        story=news.story,
                    )
                )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.inserted_primary_key[0]

    def delete_news(self, news_id: int) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _news.update().where((_news.c.id == news_id) & (_news.c.deleted == 0)).values(deleted=1)
                )
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _entry_values(entry: VPlanEntry) -> dict:
    return {
        "vplan_id": entry.vplan_id,
        "class": entry.class_name,
        "time": entry.time,
        "measures": entry.measures,
        "responsible": entry.responsible,
    }


def _row_to_vplan(row) -> VPlan:
    date_for: Optional[datetime] = from_db(row.date_for)
    date_edit: Optional[datetime] = from_db(row.date_edit)
    if date_for is None or date_edit is None:
        raise ValueError("missing date")
    return VPlan(
        id=row.id,
        date_for=date_for,
        date_edit=date_edit,
        block=row.block or "",
        header=row.header or "",
        footer=row.footer or "",
    )


def _row_to_entry(row) -> VPlanEntry:
    m = row._mapping
    return VPlanEntry(
        id=m["id"],
        vplan_id=m["vplan_id"],
        class_name=m["class"],
        time=m["time"] or "",
        measures=m["measures"] or "",
        responsible=m["responsible"] or "",
    )


def _row_to_news(row) -> News:
    return News(
        id=row.id,
        date=from_db(row.date),
        headline=row.headline,
        short=row.short or "",
        story=row.story or "",
    )
