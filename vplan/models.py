"""
vplan/models.py -- Domain dataclasses for timetable data.

These are pure data containers with zero logic. Queries and row mapping live
in vplan/store.py.

id is None before the record is written to the database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class VPlanEntry:
    """A single substitution line: which class, which lesson, what changes, who covers.

    class_name maps to the "class" column (a Python keyword).
    """

    vplan_id: int
    class_name: str
    time: str = ""  # lesson slot, e.g. "3./4."
    measures: str = ""
    responsible: str = ""
    id: Optional[int] = None


@dataclass
class VPlan:
    """The timetable for one day (date_for), as last edited at date_edit."""

    date_for: datetime
    date_edit: datetime
    block: str = ""
    header: str = ""
    footer: str = ""
    entries: list[VPlanEntry] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class News:
    """A news item shown beside the timetable."""

    date: datetime
    headline: str
    short: str = ""
    story: str = ""
    id: Optional[int] = None
