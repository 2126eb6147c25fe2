"""Demo catalog with a month of synthetic history, for trying out the UI and stats."""

from __future__ import annotations

import logging

from .models import Project
from .store import Store

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60

DEMO_PROJECTS = [
    ("Work", ["Code review", "Write documentation", "Fix bugs", "Team meeting"]),
    ("Personal", ["Exercise", "Read book", "Learn Rust", "Side project"]),
    ("Learning", ["Online course", "Practice coding", "Watch tutorials"]),
]

# (days_ago, hour, duration_minutes)
ENTRY_TEMPLATE = [
    (0, 9, 45), (0, 14, 30), (0, 16, 20),
    (1, 10, 60), (1, 15, 25),
    (2, 9, 50), (2, 11, 40), (2, 14, 35),
    (3, 10, 55), (3, 13, 30), (3, 16, 20),
    (4, 9, 45), (4, 11, 30),
    (5, 14, 60), (5, 16, 25),
    (6, 10, 40), (6, 15, 50),
    (7, 9, 35), (7, 11, 45), (7, 14, 30),
    (10, 10, 50), (10, 15, 40),
    (14, 9, 60), (14, 14, 45),
    (21, 10, 55), (21, 16, 35),
    (30, 11, 45), (30, 15, 30),
]


def seed_demo_data(store: Store) -> list[Project]:
    """Append the demo projects and their ledger. Existing data is kept.

    Each task's accumulator is set to the sum of its generated entries.
    """
    with store.transaction():
        today_start = (store.now() // DAY_SECONDS) * DAY_SECONDS
        counter = 0
        for project_name, task_names in DEMO_PROJECTS:
            project_id = store.insert_project(project_name)
            for task_name in task_names:
                offset = counter % 5
                task_id = store.insert_task(project_id, task_name)
                for days_ago, hour, minutes in ENTRY_TEMPLATE:
                    if (days_ago + offset) % 3 == 0:
                        continue
                    start = today_start - days_ago * DAY_SECONDS + hour * 3600
                    store.insert_time_entry(project_id, task_id, start, start + minutes * 60)
                    store.add_task_seconds(task_id, minutes * 60)
                counter += 1
        logger.info("Seeded %d demo projects", len(DEMO_PROJECTS))
        return store.list_projects()
