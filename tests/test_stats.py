"""Tests for rotator/stats.py — hourly, daily and per-project aggregates.

Bucketing uses UTC so results do not depend on the machine's time zone.
"""

from __future__ import annotations

from datetime import UTC

import pytest

from conftest import T0

HOUR = 3600
DAY = 24 * HOUR
MIDNIGHT = T0 - 12 * HOUR  # 2024-03-15 00:00 UTC
END = MIDNIGHT + DAY - 1


@pytest.fixture
def ledger(engine, catalog):
    """Ledger rows written straight through the store: (task, start, minutes)."""
    rows = [
        ("a1", MIDNIGHT + 9 * HOUR, 30),
        ("a2", MIDNIGHT + 9 * HOUR + 45 * 60, 30),  # crosses into 10:00
        ("b1", MIDNIGHT + 14 * HOUR, 60),
        ("a1", MIDNIGHT - DAY + 9 * HOUR, 20),  # previous day
        ("b1", MIDNIGHT - 3 * DAY + 16 * HOUR, 10),
    ]
    project_of = {"a1": "Alpha", "a2": "Alpha", "b1": "Beta"}
    with engine.store.transaction():
        for task, start, minutes in rows:
            engine.store.insert_time_entry(
                catalog[project_of[task]], catalog[task], start, start + minutes * 60
            )
    return rows


# ---------------------------------------------------------------------------
# Hourly
# ---------------------------------------------------------------------------


class TestHourly:
    def test_dense_24_rows(self, engine):
        rows = engine.stats.hourly_activity(0, T0, tz=UTC)
        assert [r.hour for r in rows] == list(range(24))
        assert all(r.total_seconds == 0 for r in rows)

    def test_buckets_by_start_hour(self, engine, ledger):
        rows = engine.stats.hourly_activity(MIDNIGHT, END, tz=UTC)
        totals = {r.hour: r.total_seconds for r in rows if r.total_seconds}
        # the 09:45 entry counts entirely toward hour 9
        assert totals == {9: 60 * 60, 14: 60 * 60}

    def test_sums_across_days(self, engine, ledger):
        rows = engine.stats.hourly_activity(MIDNIGHT - 7 * DAY, END, tz=UTC)
        assert rows[9].total_seconds == 80 * 60
        assert rows[16].total_seconds == 10 * 60

    def test_inverted_range(self, engine):
        with pytest.raises(ValueError):
            engine.stats.hourly_activity(T0, T0 - 1)


# ---------------------------------------------------------------------------
# Daily
# ---------------------------------------------------------------------------


class TestDaily:
    def test_days_with_entries_only(self, engine, ledger):
        rows = engine.stats.daily_activity(MIDNIGHT - 7 * DAY, END, tz=UTC)
        assert [(r.date, r.total_seconds) for r in rows] == [
            ("2024-03-12", 10 * 60),
            ("2024-03-14", 20 * 60),
            ("2024-03-15", 120 * 60),
        ]

    def test_range_boundaries_inclusive(self, engine, ledger):
        start = MIDNIGHT + 9 * HOUR
        end = MIDNIGHT + 14 * HOUR
        rows = engine.stats.daily_activity(start, end, tz=UTC)
        assert rows[0].total_seconds == 120 * 60

    def test_empty_range(self, engine, ledger):
        assert engine.stats.daily_activity(0, 1000, tz=UTC) == []


# ---------------------------------------------------------------------------
# Per project
# ---------------------------------------------------------------------------


class TestProjectStats:
    def test_sorted_by_total(self, engine, catalog, ledger):
        rows = engine.stats.project_time_stats(MIDNIGHT - 7 * DAY, END)
        assert [(r.project_name, r.total_seconds) for r in rows] == [
            ("Alpha", 80 * 60),
            ("Beta", 70 * 60),
        ]

    def test_archived_project_flagged(self, engine, catalog, ledger):
        engine.catalog.archive_project(catalog["Beta"])
        rows = engine.stats.project_time_stats(MIDNIGHT - 7 * DAY, END)
        beta = next(r for r in rows if r.project_id == catalog["Beta"])
        assert beta.archived
        assert beta.project_name == "Beta"

    def test_aggregates_agree(self, engine, ledger):
        start, end = MIDNIGHT - 7 * DAY, END
        hourly = sum(r.total_seconds for r in engine.stats.hourly_activity(start, end, tz=UTC))
        daily = sum(r.total_seconds for r in engine.stats.daily_activity(start, end, tz=UTC))
        per_project = sum(r.total_seconds for r in engine.stats.project_time_stats(start, end))
        assert hourly == daily == per_project == 150 * 60


# ---------------------------------------------------------------------------
# Entries & today
# ---------------------------------------------------------------------------


class TestEntries:
    def test_all_entries_ordered(self, engine, ledger):
        entries = engine.stats.time_entries()
        starts = [e.start_time for e in entries]
        assert starts == sorted(starts)
        assert len(entries) == 5

    def test_open_ended_start(self, engine, ledger):
        assert len(engine.stats.time_entries(start_time=MIDNIGHT)) == 3


class TestToday:
    def test_today_counts_ledger_and_live(self, engine, catalog, ledger, clock):
        clock.now = MIDNIGHT + 15 * HOUR - 600
        engine.tracking.start_tracking(catalog["Alpha"], catalog["a3"])
        clock.now = MIDNIGHT + 15 * HOUR
        assert engine.stats.today_seconds(tz=UTC) == 120 * 60 + 600

    def test_session_from_yesterday_counts_since_midnight(self, engine, catalog, clock):
        clock.now = MIDNIGHT - 300
        engine.tracking.start_tracking(catalog["Alpha"], catalog["a1"])
        clock.now = MIDNIGHT + 100
        assert engine.stats.today_seconds(tz=UTC) == 100
