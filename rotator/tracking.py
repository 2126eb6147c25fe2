"""Tracking sessions — open, close and finalize timed work into the ledger."""

from __future__ import annotations

import logging

from .errors import InvalidState, NotFound
from .models import ActiveSession
from .store import Store
from .validation import validate_id, validate_optional_id

logger = logging.getLogger(__name__)


class TrackingSessionManager:
    """Owns the active-session set.

    Finalizing a session writes exactly one TimeEntry and adds the same
    duration to the task's accumulator inside one store transaction, so
    tasks.time_seconds always equals the sum of the task's ledger rows.
    """

    def __init__(self, store: Store) -> None:
        self._store = store

    def active_sessions(self) -> list[ActiveSession]:
        with self._store.transaction():
            return self._store.active_sessions()

    def elapsed(self, task_id: int) -> int | None:
        """In-flight seconds for a tracked task, recomputed from the clock."""
        with self._store.transaction():
            session = self._store.get_session(task_id)
            return session.elapsed(self._store.now()) if session else None

    def start_tracking(
        self, project_id: int, task_id: int, allow_multiple: bool | None = None
    ) -> list[ActiveSession]:
        """Open a session on a task and return the resulting session set.

        allow_multiple=None falls back to the persisted policy flag. With the
        flag off every other session is finalized first. Starting a task that
        is already tracked changes nothing.
        """
        validate_id(project_id, "project_id")
        validate_id(task_id, "task_id")
        with self._store.transaction():
            project = self._store.get_project(project_id)
            if project is None:
                raise NotFound(f"Project {project_id} not found")
            task = project.find_task(task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found in project {project_id}")
            if project.is_archived:
                raise InvalidState(f"Project {project_id} is archived")
            if task.is_archived:
                raise InvalidState(f"Task {task_id} is archived")

            if self._store.get_session(task_id) is not None:
                return self._store.active_sessions()

            if allow_multiple is None:
                allow_multiple = self._store.load_settings().allow_multiple

            now = self._store.now()
            if not allow_multiple:
                for session in self._store.active_sessions():
                    self._finalize(session, now)

            self._store.insert_session(
                ActiveSession(project_id=project_id, task_id=task_id, started_at=now)
            )
            logger.info("Started tracking task %d (project %d)", task_id, project_id)
            return self._store.active_sessions()

    def stop_tracking(self, task_id: int | None = None) -> dict[int, int] | None:
        """Finalize one session, or all of them when task_id is omitted.

        Returns task_id -> finalized seconds, or None when nothing matched.
        """
        validate_optional_id(task_id, "task_id")
        with self._store.transaction():
            if task_id is None:
                sessions = self._store.active_sessions()
            else:
                session = self._store.get_session(task_id)
                sessions = [session] if session else []
            return self._finalize_many(sessions)

    def stop_project(self, project_id: int) -> dict[int, int] | None:
        """Finalize every session on a task of the given project."""
        with self._store.transaction():
            sessions = [s for s in self._store.active_sessions() if s.project_id == project_id]
            return self._finalize_many(sessions)

    def _finalize_many(self, sessions: list[ActiveSession]) -> dict[int, int] | None:
        if not sessions:
            return None
        now = self._store.now()
        return {session.task_id: self._finalize(session, now) for session in sessions}

    def _finalize(self, session: ActiveSession, now: int) -> int:
        """Close a session. Must run inside a store transaction."""
        duration = session.elapsed(now)
        self._store.delete_session(session.task_id)

        min_seconds = self._store.load_settings().min_session_seconds
        if duration < min_seconds:
            logger.warning(
                "Discarded %ds session on task %d (minimum %ds)",
                duration, session.task_id, min_seconds,
            )
            return duration
        if self._store.get_task(session.task_id) is None:
            logger.warning("Dropped session for deleted task %d", session.task_id)
            return duration

        self._store.insert_time_entry(
            project_id=session.project_id,
            task_id=session.task_id,
            start_time=session.started_at,
            end_time=session.started_at + duration,
        )
        self._store.add_task_seconds(session.task_id, duration)
        logger.info("Finalized %ds on task %d", duration, session.task_id)
        return duration
