"""Shared fixtures for rotator tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rotator.engine import Engine

# 2024-03-15 12:00:00 UTC
T0 = 1_710_504_000


class FakeClock:
    """Manually advanced clock returning integer epoch seconds."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    eng = Engine.in_memory(clock)
    yield eng
    eng.close()


@pytest.fixture
def catalog(engine):
    """Two projects: Alpha (a1, a2, a3) and Beta (b1). Returns {name: id}."""
    ids = {}
    for project_name, task_names in (("Alpha", ["a1", "a2", "a3"]), ("Beta", ["b1"])):
        engine.catalog.add_project(project_name)
        project = engine.catalog.list_projects()[-1]
        ids[project_name] = project.id
        for task_name in task_names:
            project = engine.catalog.add_task(project.id, task_name)
            ids[task_name] = project.tasks[-1].id
    return ids
