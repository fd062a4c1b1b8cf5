"""Unit tests for vplan/store.py -- timetable and news queries.

Covers:
- get_vplans() date cut-off and ordering
- class filter applies to entries, not plans
- soft-deleted plans, entries and news are hidden
- a failing entries query for some plans is tolerated; all failing is StorageError
- get_news() newest first with limit
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from core.errors import StorageError
from vplan.models import News, VPlan, VPlanEntry
from vplan.store import VPlanStore

DAY1 = datetime(2030, 3, 4, tzinfo=timezone.utc)
DAY2 = DAY1 + timedelta(days=1)
PAST = DAY1 - timedelta(days=30)


def _plan(date_for: datetime, *classes: str) -> VPlan:
    return VPlan(
        date_for=date_for,
        date_edit=date_for - timedelta(hours=12),
        block="A",
        header="Kopf",
        footer="Fuss",
        entries=[VPlanEntry(vplan_id=0, class_name=c, time="1.", measures="Entfall", responsible="Mue") for c in classes],
    )


@pytest.fixture
def store(engine):
    s = VPlanStore(engine)
    s.create_vplan(_plan(PAST, "10a"))
    s.create_vplan(_plan(DAY2, "10a", "7b"))
    s.create_vplan(_plan(DAY1, "10a", "10a", "5c"))
    return s


class TestGetVPlans:
    def test_only_plans_at_or_after_timestamp(self, store):
        plans = store.get_vplans("", DAY1)
        assert [p.date_for for p in plans] == [DAY1, DAY2]

    def test_timestamp_equal_to_date_for_is_included(self, store):
        assert [p.date_for for p in store.get_vplans("", DAY2)] == [DAY2]

    def test_entries_and_metadata_are_mapped(self, store):
        plan = store.get_vplans("", DAY1)[0]
        assert plan.block == "A"
        assert plan.header == "Kopf"
        assert plan.date_edit == DAY1 - timedelta(hours=12)
        assert len(plan.entries) == 3
        assert all(e.vplan_id == plan.id for e in plan.entries)

    def test_class_filter_applies_to_entries(self, store):
        plans = store.get_vplans("7b", DAY1)
        assert len(plans) == 2
        assert plans[0].entries == []
        assert [e.class_name for e in plans[1].entries] == ["7b"]

    def test_deleted_plan_hidden(self, store):
        plan_id = store.get_vplans("", DAY1)[0].id
        assert store.delete_vplan(plan_id) is True
        assert [p.date_for for p in store.get_vplans("", DAY1)] == [DAY2]

    def test_deleted_entry_hidden(self, store, engine):
        with engine.begin() as conn:
            conn.exec_driver_sql("UPDATE vplan_details SET deleted = 1 WHERE class = '5c'")
        plan = store.get_vplans("", DAY1)[0]
        assert sorted(e.class_name for e in plan.entries) == ["10a", "10a"]

    def test_add_entry(self, store):
        plan = store.get_vplans("", DAY2)[0]
        store.add_entry(VPlanEntry(vplan_id=plan.id, class_name="9d", time="6.", measures="Raum 101"))
        assert [e.measures for e in store.get_vplans("9d", DAY2)[0].entries] == ["Raum 101"]

    def test_no_plans_is_empty_list(self, engine):
        assert VPlanStore(engine).get_vplans("", DAY1) == []


class TestPartialFailure:
    def test_some_entry_queries_failing_returns_plans(self, store):
        real = store._get_entries
        calls = {"n": 0}

        def flaky(vplan_id, class_name):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("SELECT", {}, Exception("disk I/O error"))
            return real(vplan_id, class_name)

        with patch.object(store, "_get_entries", side_effect=flaky):
            plans = store.get_vplans("", DAY1)

        assert len(plans) == 2
        assert plans[0].entries == []
        assert len(plans[1].entries) == 2

    def test_all_entry_queries_failing_raises(self, store):
        boom = OperationalError("SELECT", {}, Exception("disk I/O error"))
        with patch.object(store, "_get_entries", side_effect=boom):
            with pytest.raises(StorageError, match="disk I/O error"):
                store.get_vplans("", DAY1)

    def test_plan_query_failure_raises(self, store, engine):
        with engine.begin() as conn:
            conn.exec_driver_sql("DROP TABLE vplan")
        with pytest.raises(StorageError):
            store.get_vplans("", DAY1)


class TestNews:
    def test_newest_first_with_limit(self, engine):
        store = VPlanStore(engine)
        for i in range(5):
            store.create_news(News(date=DAY1 + timedelta(hours=i), headline=f"n{i}", short="kurz"))
        news = store.get_news(limit=3)
        assert [n.headline for n in news] == ["n4", "n3", "n2"]
        assert news[0].date == DAY1 + timedelta(hours=4)

    def test_deleted_news_hidden(self, engine):
        store = VPlanStore(engine)
        keep = store.create_news(News(date=DAY1, headline="keep"))
        drop = store.create_news(News(date=DAY2, headline="drop"))
        assert store.delete_news(drop) is True
        assert [n.id for n in store.get_news()] == [keep]


def test_ping(engine):
    assert VPlanStore(engine).ping() is True
