"""Overlay bridge — the polling contract between the engine and a timer display.

The display samples entries() and pushes stop requests into a queue at
POLL_INTERVAL_SEC; the engine drains the queue through stop_tracking().
Nothing is pushed to the display and there are no callbacks.
"""

from __future__ import annotations

import logging
import threading

from .models import OverlayEntry
from .store import Store
from .tracking import TrackingSessionManager
from .validation import validate_id

logger = logging.getLogger(__name__)

IDLE_TITLE = "Rotator"


def format_duration(seconds: int) -> str:
    """Render seconds as H:MM:SS, or M:SS below one hour."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def truncate_name(name: str, max_len: int) -> str:
    return name if len(name) <= max_len else name[:max_len] + "…"


class StopQueue:
    """Task ids whose stop button was pressed on the display, oldest first."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[int] = []

    def push(self, task_id: int) -> None:
        with self._lock:
            if task_id not in self._items:
                self._items.append(task_id)

    def pop(self) -> int | None:
        """Next pending request, or None when nothing is pending."""
        with self._lock:
            return self._items.pop(0) if self._items else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class OverlayBridge:
    def __init__(
        self,
        store: Store,
        tracker: TrackingSessionManager,
        queue: StopQueue | None = None,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self.queue = queue or StopQueue()

    def entries(self) -> list[OverlayEntry]:
        """One row per active session, elapsed recomputed from the clock."""
        with self._store.transaction():
            now = self._store.now()
            sessions = self._store.active_sessions()
            projects = self._store.project_names()
            tasks = self._store.task_names()
        return [
            OverlayEntry(
                task_id=s.task_id,
                project_name=projects.get(s.project_id, ("", False))[0],
                task_name=tasks.get(s.task_id, ""),
                elapsed_seconds=s.elapsed(now),
            )
            for s in sessions
        ]

    def request_stop(self, task_id: int) -> None:
        self.queue.push(validate_id(task_id, "task_id"))

    def drain(self) -> dict[int, int]:
        """Stop every queued task. Returns task_id -> finalized seconds."""
        stopped: dict[int, int] = {}
        while True:
            task_id = self.queue.pop()
            if task_id is None:
                break
            result = self._tracker.stop_tracking(task_id)
            if result is None:
                logger.warning("Ignored stop request for untracked task %d", task_id)
                continue
            stopped.update(result)
        return stopped

    def poll(self) -> list[OverlayEntry]:
        """One display tick: apply pending stop requests, then sample the feed."""
        self.drain()
        return self.entries()

    def status_title(self) -> str:
        """Menu-bar title: the first live session, else the current project."""
        entries = self.entries()
        if entries:
            first = entries[0]
            return (
                f"[{truncate_name(first.project_name, 6)}] "
                f"{truncate_name(first.task_name, 8)} │ {format_duration(first.elapsed_seconds)}"
            )

        with self._store.transaction():
            projects = self._store.active_projects()
            index = self._store.current_project_index()
        if not projects:
            return IDLE_TITLE
        index %= len(projects)
        return f"{truncate_name(projects[index].name, 10)} ({index + 1}/{len(projects)})"
