"""Aggregate statistics over the time ledger.

Read-only: nothing here writes to the store. Every aggregate selects the
entries whose start_time lies in [start_time, end_time] and attributes an
entry's whole duration to the hour and calendar day of its start, so the
hourly, daily and per-project totals for one range always agree. Over the
full history, a task's ledger total equals its accumulated seconds.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, tzinfo

from .models import DailyActivity, HourlyActivity, ProjectTimeStats, TimeEntry
from .store import Store
from .validation import validate_time_range

UNKNOWN_PROJECT = "Unknown"


def _local(ts: int, tz: tzinfo | None) -> datetime:
    # tz=None renders in the machine's local time zone
    return datetime.fromtimestamp(ts, tz)


class StatsAggregator:
    def __init__(self, store: Store) -> None:
        self._store = store

    def time_entries(
        self, start_time: int | None = None, end_time: int | None = None
    ) -> list[TimeEntry]:
        if start_time is not None and end_time is not None:
            validate_time_range(start_time, end_time)
        with self._store.transaction():
            return self._store.time_entries(start_time, end_time)

    def hourly_activity(
        self, start_time: int, end_time: int, tz: tzinfo | None = None
    ) -> list[HourlyActivity]:
        """Seconds per hour of day (0-23), summed across every day in range."""
        buckets = [HourlyActivity(hour=h) for h in range(24)]
        for entry in self.time_entries(*validate_time_range(start_time, end_time)):
            buckets[_local(entry.start_time, tz).hour].total_seconds += entry.duration_seconds
        return buckets

    def daily_activity(
        self, start_time: int, end_time: int, tz: tzinfo | None = None
    ) -> list[DailyActivity]:
        """Seconds per calendar day, days without entries omitted."""
        totals: dict[str, int] = defaultdict(int)
        for entry in self.time_entries(*validate_time_range(start_time, end_time)):
            totals[_local(entry.start_time, tz).date().isoformat()] += entry.duration_seconds
        return [DailyActivity(date=day, total_seconds=totals[day]) for day in sorted(totals)]

    def project_time_stats(self, start_time: int, end_time: int) -> list[ProjectTimeStats]:
        """Seconds per project, largest first.

        Archived projects are flagged; projects deleted since the entries
        were recorded are reported as Unknown with deleted=True.
        """
        validate_time_range(start_time, end_time)
        with self._store.transaction():
            entries = self._store.time_entries(start_time, end_time)
            names = self._store.project_names()

        totals: dict[int, int] = defaultdict(int)
        for entry in entries:
            totals[entry.project_id] += entry.duration_seconds

        rows = []
        for project_id, total in totals.items():
            if project_id in names:
                name, archived = names[project_id]
                rows.append(ProjectTimeStats(project_id, name, total, archived=archived))
            else:
                rows.append(ProjectTimeStats(project_id, UNKNOWN_PROJECT, total, deleted=True))
        rows.sort(key=lambda r: (-r.total_seconds, r.project_id))
        return rows

    def today_seconds(self, tz: tzinfo | None = None) -> int:
        """Ledger seconds started since local midnight plus live in-flight time."""
        with self._store.transaction():
            now = self._store.now()
            midnight = _local(now, tz).replace(hour=0, minute=0, second=0, microsecond=0)
            since = int(midnight.timestamp())
            total = sum(e.duration_seconds for e in self._store.time_entries(since, now))
            for session in self._store.active_sessions():
                total += max(0, now - max(session.started_at, since))
            return total
