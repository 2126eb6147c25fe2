"""Cyclic selection of the current project and of each project's current task."""

from __future__ import annotations

import logging

from .errors import InvalidState, NotFound, OutOfRange
from .models import Project, Task
from .store import Store
from .tracking import TrackingSessionManager
from .validation import validate_index, validate_optional_id

logger = logging.getLogger(__name__)


class RotationController:
    """Moves the selection pointers. Never touches accumulated time.

    Both indexes are read modulo the size of their domain at query time:
    the current project index over non-archived projects, a project's
    current_task_index over its active task subsequence.
    """

    def __init__(self, store: Store, tracker: TrackingSessionManager) -> None:
        self._store = store
        self._tracker = tracker

    def current_project_index(self) -> int:
        with self._store.transaction():
            return self._store.current_project_index()

    def current_project(self) -> Project | None:
        with self._store.transaction():
            return self._current_project()

    def _current_project(self) -> Project | None:
        projects = self._store.active_projects()
        if not projects:
            return None
        return projects[self._store.current_project_index() % len(projects)]

    def select_project(self, index: int) -> int:
        validate_index(index)
        with self._store.transaction():
            count = self._store.count_active_projects()
            if not 0 <= index < count:
                raise OutOfRange(f"Project index {index} out of range (0..{count - 1})")
            self._store.set_current_project_index(index)
            return index

    def rotate_project(self, track: bool = False) -> tuple[int, Project | None]:
        """Advance to the next non-archived project, wrapping after the last.

        With track=True the new project's current task is started as well.
        """
        with self._store.transaction():
            projects = self._store.active_projects()
            if not projects:
                self._store.set_current_project_index(0)
                return 0, None

            index = (self._store.current_project_index() + 1) % len(projects)
            self._store.set_current_project_index(index)
            project = projects[index]
            logger.debug("Rotated to project %d (%s)", index, project.name)

            if track:
                task = project.current_task()
                if task is not None:
                    self._tracker.start_tracking(project.id, task.id)
            return index, project

    def current_task(self, project_id: int | None = None) -> Task | None:
        with self._store.transaction():
            project = self._resolve(project_id)
            return project.current_task() if project else None

    def rotate_task(self, project_id: int | None = None, track: bool = False) -> Task | None:
        """Select the next task of the project's active subsequence.

        The subsequence is recomputed on every call, so tasks that were done
        or archived since the last rotation are skipped. When the project has
        no active task the index is left alone and None is returned.
        """
        validate_optional_id(project_id, "project_id")
        with self._store.transaction():
            project = self._resolve(project_id)
            if project is None:
                return None
            if project.is_archived:
                raise InvalidState(f"Project {project.id} is archived")

            active = project.active_tasks()
            if not active:
                return None

            index = (project.current_task_index + 1) % len(active)
            self._store.set_task_index(project.id, index)
            task = active[index]
            logger.debug("Rotated project %d to task %d (%s)", project.id, task.id, task.name)

            if track:
                self._tracker.start_tracking(project.id, task.id)
            return task

    def _resolve(self, project_id: int | None) -> Project | None:
        if project_id is None:
            return self._current_project()
        project = self._store.get_project(project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")
        return project
