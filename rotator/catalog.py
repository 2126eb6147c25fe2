"""Project and task catalog — create, rename, archive, restore, delete, done."""

from __future__ import annotations

import logging

from .errors import InvalidState, NotFound
from .models import Project, Task
from .store import Store
from .tracking import TrackingSessionManager
from .validation import MAX_PROJECT_NAME, MAX_TASK_NAME, normalize_name, validate_id

logger = logging.getLogger(__name__)


class CatalogManager:
    """Catalog edits. Blank names are a silent no-op, unknown ids raise NotFound.

    Archiving force-finalizes live sessions on the affected tasks in the
    same transaction. Permanent deletion removes catalog rows only; the
    ledger keeps its TimeEntry rows unless purge_history is requested.
    """

    def __init__(self, store: Store, tracker: TrackingSessionManager) -> None:
        self._store = store
        self._tracker = tracker

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def list_projects(self, include_archived: bool = False) -> list[Project]:
        with self._store.transaction():
            return self._list(include_archived)

    def _list(self, include_archived: bool = False) -> list[Project]:
        cutoff = None
        hide_after = self._store.load_settings().hide_done_after_seconds
        if hide_after is not None and not include_archived:
            cutoff = self._store.now() - hide_after
        return self._store.list_projects(include_archived, hide_done_before=cutoff)

    def get_project(self, project_id: int) -> Project:
        validate_id(project_id, "project_id")
        with self._store.transaction():
            return self._require_project(project_id)

    def _require_project(self, project_id: int) -> Project:
        project = self._store.get_project(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project

    def _require_task(self, project_id: int, task_id: int) -> tuple[Project, Task]:
        project = self._require_project(project_id)
        task = project.find_task(task_id)
        if task is None:
            raise NotFound(f"Task {task_id} not found in project {project_id}")
        return project, task

    # -----------------------------------------------------------------------
    # Create & rename
    # -----------------------------------------------------------------------

    def add_project(self, name: str) -> list[Project]:
        clean = normalize_name(name, "project name", MAX_PROJECT_NAME)
        with self._store.transaction():
            if clean is not None:
                project_id = self._store.insert_project(clean)
                logger.info("Added project %d (%s)", project_id, clean)
            return self._list()

    def add_task(self, project_id: int, name: str) -> Project:
        validate_id(project_id, "project_id")
        clean = normalize_name(name, "task name", MAX_TASK_NAME)
        with self._store.transaction():
            self._require_project(project_id)
            if clean is not None:
                task_id = self._store.insert_task(project_id, clean)
                logger.info("Added task %d (%s) to project %d", task_id, clean, project_id)
            return self._store.get_project(project_id)

    def rename_project(self, project_id: int, name: str) -> list[Project]:
        validate_id(project_id, "project_id")
        clean = normalize_name(name, "project name", MAX_PROJECT_NAME)
        with self._store.transaction():
            self._require_project(project_id)
            if clean is not None:
                self._store.set_project_name(project_id, clean)
            return self._list()

    def rename_task(self, project_id: int, task_id: int, name: str) -> Project:
        validate_id(project_id, "project_id")
        validate_id(task_id, "task_id")
        clean = normalize_name(name, "task name", MAX_TASK_NAME)
        with self._store.transaction():
            self._require_task(project_id, task_id)
            if clean is not None:
                self._store.set_task_name(task_id, clean)
            return self._store.get_project(project_id)

    # -----------------------------------------------------------------------
    # Archive & restore
    # -----------------------------------------------------------------------

    def archive_project(self, project_id: int) -> list[Project]:
        """Hide a project from rotation. Its tasks keep their own archive state."""
        validate_id(project_id, "project_id")
        with self._store.transaction():
            project = self._require_project(project_id)
            if not project.is_archived:
                self._tracker.stop_project(project_id)
                self._store.set_project_archived(project_id, self._store.now())
                self._clamp_current_index()
                logger.info("Archived project %d (%s)", project_id, project.name)
            return self._list()

    def archive_task(self, project_id: int, task_id: int) -> Project:
        validate_id(project_id, "project_id")
        validate_id(task_id, "task_id")
        with self._store.transaction():
            _, task = self._require_task(project_id, task_id)
            if not task.is_archived:
                self._tracker.stop_tracking(task_id)
                self._store.set_task_archived(task_id, self._store.now())
                logger.info("Archived task %d (%s)", task_id, task.name)
            return self._store.get_project(project_id)

    def restore_project(self, project_id: int) -> list[Project]:
        validate_id(project_id, "project_id")
        with self._store.transaction():
            self._require_project(project_id)
            self._store.set_project_archived(project_id, None)
            logger.info("Restored project %d", project_id)
            return self._list()

    def restore_task(self, project_id: int, task_id: int) -> Project:
        validate_id(project_id, "project_id")
        validate_id(task_id, "task_id")
        with self._store.transaction():
            self._require_task(project_id, task_id)
            self._store.set_task_archived(task_id, None)
            logger.info("Restored task %d", task_id)
            return self._store.get_project(project_id)

    def _clamp_current_index(self) -> None:
        if self._store.current_project_index() >= self._store.count_active_projects():
            self._store.set_current_project_index(0)

    # -----------------------------------------------------------------------
    # Permanent deletion
    # -----------------------------------------------------------------------

    def delete_project_permanent(self, project_id: int, purge_history: bool = False) -> bool:
        validate_id(project_id, "project_id")
        with self._store.transaction():
            project = self._require_project(project_id)
            if not project.is_archived:
                raise InvalidState(f"Project {project_id} must be archived before deletion")
            if purge_history:
                purged = self._store.delete_entries_for_project(project_id)
                logger.info("Purged %d ledger rows of project %d", purged, project_id)
            self._store.delete_project(project_id)
            self._clamp_current_index()
            logger.info("Deleted project %d (%s)", project_id, project.name)
            return True

    def delete_task_permanent(self, task_id: int, purge_history: bool = False) -> bool:
        validate_id(task_id, "task_id")
        with self._store.transaction():
            task = self._store.get_task(task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found")
            if not task.is_archived:
                raise InvalidState(f"Task {task_id} must be archived before deletion")
            if purge_history:
                purged = self._store.delete_entries_for_task(task_id)
                logger.info("Purged %d ledger rows of task %d", purged, task_id)
            self._store.delete_task(task_id)
            logger.info("Deleted task %d (%s)", task_id, task.name)
            return True

    # -----------------------------------------------------------------------
    # Done status
    # -----------------------------------------------------------------------

    def toggle_task_done(self, project_id: int, task_id: int, done: bool) -> Project:
        """Set or clear done_at. Tracking and accumulated time are left alone."""
        validate_id(project_id, "project_id")
        validate_id(task_id, "task_id")
        with self._store.transaction():
            _, task = self._require_task(project_id, task_id)
            if done and not task.is_done:
                self._store.set_task_done(task_id, self._store.now())
            elif not done and task.is_done:
                self._store.set_task_done(task_id, None)
            return self._store.get_project(project_id)

    # -----------------------------------------------------------------------
    # Reset
    # -----------------------------------------------------------------------

    def reset_store(self) -> list[Project]:
        """Erase the catalog, sessions, settings and the whole ledger."""
        with self._store.transaction():
            self._store.reset()
            logger.info("Store reset")
            return []
