"""Rotator data models — pure stdlib, no external dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Task:
    """One task inside a project — a row in the tasks table."""

    id: int
    project_id: int
    name: str
    time_seconds: int = 0  # cache of the task's finalized ledger durations
    done_at: int | None = None
    archived_at: int | None = None

    @property
    def is_done(self) -> bool:
        return self.done_at is not None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def in_rotation(self) -> bool:
        return self.done_at is None and self.archived_at is None


@dataclass
class Project:
    """A project with its tasks in insertion order."""

    id: int
    name: str
    current_task_index: int = 0
    archived_at: int | None = None
    tasks: list[Task] = field(default_factory=list)

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def active_tasks(self) -> list[Task]:
        """Tasks eligible for rotation: neither done nor archived, stored order."""
        return [t for t in self.tasks if t.in_rotation]

    def current_task(self) -> Task | None:
        active = self.active_tasks()
        if not active:
            return None
        return active[self.current_task_index % len(active)]

    def find_task(self, task_id: int) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


@dataclass
class ActiveSession:
    """An open tracking session. Elapsed time is always now - started_at."""

    project_id: int
    task_id: int
    started_at: int

    def elapsed(self, now: int) -> int:
        return max(0, now - self.started_at)


@dataclass
class TimeEntry:
    """Append-only ledger row, written once when a session is finalized."""

    id: int
    project_id: int
    task_id: int
    start_time: int
    end_time: int
    duration_seconds: int


@dataclass
class HourlyActivity:
    hour: int
    total_seconds: int = 0


@dataclass
class DailyActivity:
    date: str  # YYYY-MM-DD in the bucketing time zone
    total_seconds: int = 0


@dataclass
class ProjectTimeStats:
    project_id: int
    project_name: str
    total_seconds: int
    archived: bool = False
    deleted: bool = False


@dataclass
class OverlayEntry:
    """One row of the always-on-top timer feed."""

    task_id: int
    project_name: str
    task_name: str
    elapsed_seconds: int


@dataclass
class EngineSettings:
    allow_multiple: bool = False
    min_session_seconds: int = 0
    hide_done_after_seconds: int | None = None
