"""Rotator data store — projects, tasks, sessions and the time ledger in SQLite.

Every read-modify-write goes through Store.transaction(), which holds a
process-wide re-entrant lock and a single SQLite transaction. A failure
anywhere inside the block rolls the whole unit back, so a finalized
session never exists without its ledger row and accumulator update.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import StorageUnavailable
from .models import ActiveSession, EngineSettings, Project, Task, TimeEntry

logger = logging.getLogger(__name__)

Clock = Callable[[], int]

SCHEMA_VERSION = 2

# {name} lets the migration build a table under a temporary name
TABLES = {
    "projects": """
CREATE TABLE IF NOT EXISTS {name} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    current_task_index INTEGER NOT NULL DEFAULT 0,
    archived_at INTEGER
)""",
    "tasks": """
CREATE TABLE IF NOT EXISTS {name} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    time_seconds INTEGER NOT NULL DEFAULT 0,
    done_at INTEGER,
    archived_at INTEGER,
    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
)""",
    "app_state": """
CREATE TABLE IF NOT EXISTS {name} (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)""",
    "active_sessions": """
CREATE TABLE IF NOT EXISTS {name} (
    task_id INTEGER PRIMARY KEY,
    project_id INTEGER NOT NULL,
    started_at INTEGER NOT NULL
)""",
    # No foreign keys: ledger rows outlive the catalog rows they reference
    "time_entries": """
CREATE TABLE IF NOT EXISTS {name} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    task_id INTEGER NOT NULL,
    start_time INTEGER NOT NULL,
    end_time INTEGER NOT NULL,
    duration_seconds INTEGER NOT NULL CHECK (duration_seconds >= 0)
)""",
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_entries_start ON time_entries(start_time)",
    "CREATE INDEX IF NOT EXISTS idx_entries_task ON time_entries(task_id)",
]

# Legacy tables rebuilt by the v1 migration: (columns, select expression)
_REBUILT = {
    "projects": (
        "id, name, current_task_index, archived_at",
        "id, name, current_task_index, archived_at",
    ),
    "tasks": (
        "id, project_id, name, time_seconds, done_at, archived_at",
        "id, project_id, name, time_seconds, done_at, archived_at",
    ),
    "time_entries": (
        "id, project_id, task_id, start_time, end_time, duration_seconds",
        "id, project_id, task_id, start_time, end_time, MAX(duration_seconds, 0)",
    ),
}

# Highest id each AUTOINCREMENT table must never hand out again
_HIGHEST_ID = {
    "projects": (
        "SELECT MAX(id) FROM projects",
        "SELECT MAX(project_id) FROM tasks",
        "SELECT MAX(project_id) FROM time_entries",
        "SELECT MAX(project_id) FROM active_sessions",
    ),
    "tasks": (
        "SELECT MAX(id) FROM tasks",
        "SELECT MAX(task_id) FROM time_entries",
        "SELECT MAX(task_id) FROM active_sessions",
    ),
    "time_entries": ("SELECT MAX(id) FROM time_entries",),
}

# app_state keys
KEY_CURRENT_PROJECT = "current_project_index"
KEY_ALLOW_MULTIPLE = "allow_multiple"
KEY_MIN_SESSION = "min_session_seconds"
KEY_HIDE_DONE_AFTER = "hide_done_after_seconds"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def system_clock() -> int:
    return int(time.time())


def _project_from_row(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        current_task_index=row["current_task_index"],
        archived_at=row["archived_at"],
    )


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        time_seconds=row["time_seconds"],
        done_at=row["done_at"],
        archived_at=row["archived_at"],
    )


def _session_from_row(row: sqlite3.Row) -> ActiveSession:
    return ActiveSession(
        project_id=row["project_id"],
        task_id=row["task_id"],
        started_at=row["started_at"],
    )


def _entry_from_row(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        project_id=row["project_id"],
        task_id=row["task_id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration_seconds=row["duration_seconds"],
    )


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}


def _apply_schema(conn: sqlite3.Connection) -> None:
    # executescript() would commit the surrounding transaction
    for table, ddl in TABLES.items():
        conn.execute(ddl.format(name=table))
    for statement in INDEXES:
        conn.execute(statement)


def _rebuild_tables(conn: sqlite3.Connection) -> None:
    for table, (columns, select) in _REBUILT.items():
        if _table_exists(conn, table):
            conn.execute(TABLES[table].format(name=f"{table}_new"))
            conn.execute(
                f"INSERT INTO {table}_new ({columns}) SELECT {select} FROM {table}"
            )
    # children first
    for table in ("time_entries", "tasks", "projects"):
        if _table_exists(conn, f"{table}_new"):
            conn.execute(f"DROP TABLE {table}")
            conn.execute(f"ALTER TABLE {table}_new RENAME TO {table}")


def _seed_sequences(conn: sqlite3.Connection) -> None:
    for table, queries in _HIGHEST_ID.items():
        highest = max(conn.execute(q).fetchone()[0] or 0 for q in queries)
        conn.execute("DELETE FROM sqlite_sequence WHERE name = ?", (table,))
        conn.execute(
            "INSERT INTO sqlite_sequence (name, seq) VALUES (?, ?)", (table, highest)
        )


def _migrate_v1(conn: sqlite3.Connection, now: int) -> None:
    """v1 → v2 upgrade of a legacy database.

    Boolean archived/done flags become timestamps, and projects, tasks and
    time_entries are rebuilt with AUTOINCREMENT ids. The rebuilt ledger has
    no foreign keys, so deleting a task no longer cascades into its history.
    sqlite_sequence is seeded past every id still referenced anywhere, and
    active_tracking is renamed to active_sessions.

    Must run with foreign key enforcement off: with it on, dropping the old
    parent tables would cascade into the rows being kept.
    """
    for table in ("projects", "tasks"):
        if "archived_at" not in _columns(conn, table):
            conn.execute(f"ALTER TABLE {table} ADD COLUMN archived_at INTEGER")
        if "archived" in _columns(conn, table):
            conn.execute(
                f"UPDATE {table} SET archived_at = ? WHERE archived = 1 AND archived_at IS NULL",
                (now,),
            )

    task_columns = _columns(conn, "tasks")
    if "done_at" not in task_columns:
        conn.execute("ALTER TABLE tasks ADD COLUMN done_at INTEGER")
    if "done" in task_columns:
        conn.execute(
            "UPDATE tasks SET done_at = ? WHERE done = 1 AND done_at IS NULL", (now,)
        )

    _rebuild_tables(conn)
    _apply_schema(conn)
    if _table_exists(conn, "active_tracking"):
        conn.execute(
            "INSERT OR IGNORE INTO active_sessions (task_id, project_id, started_at) "
            "SELECT task_id, project_id, started_at FROM active_tracking"
        )
        conn.execute("DROP TABLE active_tracking")
    _seed_sequences(conn)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class Store:
    """SQLite-backed durable store.

    One Store owns one connection. The connection is shared across threads
    (the web server runs handlers in a pool), so every access is serialised
    by the store lock.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Clock | None = None) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self._depth = 0
        self.clock: Clock = clock or system_clock
        try:
            self._init_schema()
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(f"Cannot initialise database: {exc}") from exc

    @classmethod
    def open(cls, path: Path, clock: Clock | None = None) -> Store:
        """Open or create a database at the given path."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                path, isolation_level=None, check_same_thread=False, timeout=5.0
            )
        except (OSError, sqlite3.OperationalError) as exc:
            raise StorageUnavailable(f"Cannot open database {path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return cls(conn, clock)

    @classmethod
    def open_in_memory(cls, clock: Clock | None = None) -> Store:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return cls(conn, clock)

    def __enter__(self) -> Store:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def now(self) -> int:
        return int(self.clock())

    def _init_schema(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version >= SCHEMA_VERSION:
            return
        # the pragma is ignored inside a transaction
        self._conn.execute("PRAGMA foreign_keys = OFF")
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            if version == 0 and _table_exists(self._conn, "projects"):
                logger.info("Migrating legacy database to schema v%d", SCHEMA_VERSION)
                _migrate_v1(self._conn, self.now())
            else:
                _apply_schema(self._conn)
            self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    # -----------------------------------------------------------------------
    # Unit of work
    # -----------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block as one atomic unit. Nested calls join the outer unit."""
        with self._lock:
            outer = self._depth == 0
            if outer:
                self._raw("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self._conn
            except BaseException as exc:
                self._depth -= 1
                if outer:
                    self._rollback()
                if isinstance(exc, sqlite3.OperationalError):
                    raise StorageUnavailable(str(exc)) from exc
                raise
            else:
                self._depth -= 1
                if outer:
                    try:
                        self._raw("COMMIT")
                    except StorageUnavailable:
                        self._rollback()
                        raise

    def _raw(self, sql: str) -> None:
        try:
            self._conn.execute(sql)
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable(f"{sql} failed: {exc}") from exc

    def _rollback(self) -> None:
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as exc:
            logger.warning("Rollback failed: %s", exc)

    # -----------------------------------------------------------------------
    # App state
    # -----------------------------------------------------------------------

    def get_state(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM app_state WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO app_state (key, value) VALUES (?, ?)", (key, value)
        )

    def delete_state(self, key: str) -> None:
        self._conn.execute("DELETE FROM app_state WHERE key = ?", (key,))

    def current_project_index(self) -> int:
        value = self.get_state(KEY_CURRENT_PROJECT)
        try:
            return max(0, int(value)) if value is not None else 0
        except ValueError:
            logger.warning("Ignoring corrupt current project index %r", value)
            return 0

    def set_current_project_index(self, index: int) -> None:
        self.set_state(KEY_CURRENT_PROJECT, str(index))

    def load_settings(self) -> EngineSettings:
        settings = EngineSettings()
        allow = self.get_state(KEY_ALLOW_MULTIPLE)
        if allow is not None:
            settings.allow_multiple = allow == "1"
        min_session = self.get_state(KEY_MIN_SESSION)
        if min_session is not None:
            settings.min_session_seconds = int(min_session)
        hide_after = self.get_state(KEY_HIDE_DONE_AFTER)
        if hide_after is not None:
            settings.hide_done_after_seconds = int(hide_after)
        return settings

    def save_settings(self, settings: EngineSettings) -> None:
        self.set_state(KEY_ALLOW_MULTIPLE, "1" if settings.allow_multiple else "0")
        self.set_state(KEY_MIN_SESSION, str(settings.min_session_seconds))
        if settings.hide_done_after_seconds is None:
            self.delete_state(KEY_HIDE_DONE_AFTER)
        else:
            self.set_state(KEY_HIDE_DONE_AFTER, str(settings.hide_done_after_seconds))

    # -----------------------------------------------------------------------
    # Projects & tasks
    # -----------------------------------------------------------------------

    def list_projects(
        self, include_archived: bool = False, hide_done_before: int | None = None
    ) -> list[Project]:
        """Projects with nested tasks.

        Without include_archived, archived projects and archived tasks are
        left out, and done tasks finished before hide_done_before are hidden.
        With it, everything is returned, archived rows last.
        """
        if include_archived:
            project_rows = self._conn.execute(
                "SELECT * FROM projects ORDER BY archived_at IS NOT NULL, id"
            ).fetchall()
            task_rows = self._conn.execute(
                "SELECT * FROM tasks ORDER BY archived_at IS NOT NULL, id"
            ).fetchall()
        else:
            project_rows = self._conn.execute(
                "SELECT * FROM projects WHERE archived_at IS NULL ORDER BY id"
            ).fetchall()
            query = "SELECT * FROM tasks WHERE archived_at IS NULL"
            params: tuple = ()
            if hide_done_before is not None:
                query += " AND (done_at IS NULL OR done_at > ?)"
                params = (hide_done_before,)
            task_rows = self._conn.execute(query + " ORDER BY id", params).fetchall()

        projects = [_project_from_row(row) for row in project_rows]
        by_id = {p.id: p for p in projects}
        for row in task_rows:
            project = by_id.get(row["project_id"])
            if project is not None:
                project.tasks.append(_task_from_row(row))
        return projects

    def active_projects(self) -> list[Project]:
        """Non-archived projects with all of their tasks — the rotation domain."""
        projects = [
            _project_from_row(row)
            for row in self._conn.execute(
                "SELECT * FROM projects WHERE archived_at IS NULL ORDER BY id"
            )
        ]
        for project in projects:
            project.tasks = self._tasks_for(project.id)
        return projects

    def count_active_projects(self) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM projects WHERE archived_at IS NULL"
        ).fetchone()[0]

    def get_project(self, project_id: int) -> Project | None:
        """Project with all tasks, archived ones included, in insertion order."""
        row = self._conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            return None
        project = _project_from_row(row)
        project.tasks = self._tasks_for(project_id)
        return project

    def _tasks_for(self, project_id: int) -> list[Task]:
        rows = self._conn.execute(
            "SELECT * FROM tasks WHERE project_id = ? ORDER BY id", (project_id,)
        )
        return [_task_from_row(row) for row in rows]

    def get_task(self, task_id: int) -> Task | None:
        row = self._conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _task_from_row(row) if row else None

    def project_names(self) -> dict[int, tuple[str, bool]]:
        """id -> (name, archived) for every catalog project."""
        return {
            row["id"]: (row["name"], row["archived_at"] is not None)
            for row in self._conn.execute("SELECT id, name, archived_at FROM projects")
        }

    def task_names(self) -> dict[int, str]:
        return {row["id"]: row["name"] for row in self._conn.execute("SELECT id, name FROM tasks")}

    def insert_project(self, name: str) -> int:
        cur = self._conn.execute(
            "INSERT INTO projects (name, current_task_index) VALUES (?, 0)", (name,)
        )
        return cur.lastrowid

    def insert_task(self, project_id: int, name: str, time_seconds: int = 0) -> int:
        cur = self._conn.execute(
            "INSERT INTO tasks (project_id, name, time_seconds) VALUES (?, ?, ?)",
            (project_id, name, time_seconds),
        )
        return cur.lastrowid

    def set_project_name(self, project_id: int, name: str) -> None:
        self._conn.execute("UPDATE projects SET name = ? WHERE id = ?", (name, project_id))

    def set_project_archived(self, project_id: int, archived_at: int | None) -> None:
        self._conn.execute(
            "UPDATE projects SET archived_at = ? WHERE id = ?", (archived_at, project_id)
        )

    def set_task_index(self, project_id: int, index: int) -> None:
        self._conn.execute(
            "UPDATE projects SET current_task_index = ? WHERE id = ?", (index, project_id)
        )

    def set_task_name(self, task_id: int, name: str) -> None:
        self._conn.execute("UPDATE tasks SET name = ? WHERE id = ?", (name, task_id))

    def set_task_archived(self, task_id: int, archived_at: int | None) -> None:
        self._conn.execute("UPDATE tasks SET archived_at = ? WHERE id = ?", (archived_at, task_id))

    def set_task_done(self, task_id: int, done_at: int | None) -> None:
        self._conn.execute("UPDATE tasks SET done_at = ? WHERE id = ?", (done_at, task_id))

    def add_task_seconds(self, task_id: int, seconds: int) -> None:
        self._conn.execute(
            "UPDATE tasks SET time_seconds = time_seconds + ? WHERE id = ?", (seconds, task_id)
        )

    def delete_project(self, project_id: int) -> None:
        # tasks go with it through ON DELETE CASCADE
        self._conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))

    def delete_task(self, task_id: int) -> None:
        self._conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))

    # -----------------------------------------------------------------------
    # Active sessions
    # -----------------------------------------------------------------------

    def active_sessions(self) -> list[ActiveSession]:
        rows = self._conn.execute("SELECT * FROM active_sessions ORDER BY started_at, task_id")
        return [_session_from_row(row) for row in rows]

    def get_session(self, task_id: int) -> ActiveSession | None:
        row = self._conn.execute(
            "SELECT * FROM active_sessions WHERE task_id = ?", (task_id,)
        ).fetchone()
        return _session_from_row(row) if row else None

    def insert_session(self, session: ActiveSession) -> None:
        self._conn.execute(
            "INSERT INTO active_sessions (task_id, project_id, started_at) VALUES (?, ?, ?)",
            (session.task_id, session.project_id, session.started_at),
        )

    def delete_session(self, task_id: int) -> None:
        self._conn.execute("DELETE FROM active_sessions WHERE task_id = ?", (task_id,))

    # -----------------------------------------------------------------------
    # Ledger
    # -----------------------------------------------------------------------

    def insert_time_entry(
        self, project_id: int, task_id: int, start_time: int, end_time: int
    ) -> TimeEntry:
        duration = end_time - start_time
        cur = self._conn.execute(
            "INSERT INTO time_entries (project_id, task_id, start_time, end_time, duration_seconds) "
            "VALUES (?, ?, ?, ?, ?)",
            (project_id, task_id, start_time, end_time, duration),
        )
        return TimeEntry(
            id=cur.lastrowid,
            project_id=project_id,
            task_id=task_id,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=duration,
        )

    def time_entries(
        self, start_time: int | None = None, end_time: int | None = None
    ) -> list[TimeEntry]:
        """Ledger rows whose start_time lies in [start_time, end_time]."""
        query = "SELECT * FROM time_entries WHERE 1 = 1"
        params: list[int] = []
        if start_time is not None:
            query += " AND start_time >= ?"
            params.append(start_time)
        if end_time is not None:
            query += " AND start_time <= ?"
            params.append(end_time)
        rows = self._conn.execute(query + " ORDER BY start_time, id", params)
        return [_entry_from_row(row) for row in rows]

    def ledger_seconds(self, task_id: int) -> int:
        return self._conn.execute(
            "SELECT COALESCE(SUM(duration_seconds), 0) FROM time_entries WHERE task_id = ?",
            (task_id,),
        ).fetchone()[0]

    def delete_entries_for_task(self, task_id: int) -> int:
        return self._conn.execute("DELETE FROM time_entries WHERE task_id = ?", (task_id,)).rowcount

    def delete_entries_for_project(self, project_id: int) -> int:
        return self._conn.execute(
            "DELETE FROM time_entries WHERE project_id = ?", (project_id,)
        ).rowcount

    # -----------------------------------------------------------------------
    # Reset
    # -----------------------------------------------------------------------

    def reset(self) -> None:
        """Delete every row, ledger included, and restart id allocation at 1."""
        for table in ("time_entries", "active_sessions", "tasks", "projects", "app_state"):
            self._conn.execute(f"DELETE FROM {table}")
        if _table_exists(self._conn, "sqlite_sequence"):
            self._conn.execute("DELETE FROM sqlite_sequence")
