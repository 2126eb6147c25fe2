"""Tests for rotator/store.py — schema, transactions, persistence, migration.

File-backed tests use tmp_path so nothing touches the real data directory.
"""

from __future__ import annotations

import sqlite3

import pytest

from rotator.engine import Engine
from rotator.errors import StorageUnavailable
from rotator.models import ActiveSession, EngineSettings
from rotator.stats import UNKNOWN_PROJECT
from rotator.store import SCHEMA_VERSION, Store

from conftest import T0, FakeClock

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    s = Store.open_in_memory(FakeClock())
    yield s
    s.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "rotator.db"


# ---------------------------------------------------------------------------
# Schema & lifecycle
# ---------------------------------------------------------------------------


class TestOpen:
    def test_creates_parent_dirs(self, db_path):
        with Store.open(db_path):
            pass
        assert db_path.exists()

    def test_sets_schema_version(self, db_path):
        Store.open(db_path).close()
        conn = sqlite3.connect(db_path)
        assert conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
        conn.close()

    def test_unopenable_path_raises(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageUnavailable):
            Store.open(blocker / "rotator.db")

    def test_clock_is_injectable(self, store):
        assert store.now() == T0


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    def test_commit(self, store):
        with store.transaction():
            store.insert_project("Work")
        with store.transaction():
            assert [p.name for p in store.list_projects()] == ["Work"]

    def test_rollback_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_project("Work")
                raise RuntimeError("boom")
        with store.transaction():
            assert store.list_projects() == []

    def test_nested_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.insert_project("Inner")
                store.insert_project("Outer")
                raise RuntimeError("boom")
        with store.transaction():
            assert store.list_projects() == []

    def test_usable_after_rollback(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                raise RuntimeError("boom")
        with store.transaction():
            store.insert_project("Work")
            assert len(store.list_projects()) == 1


# ---------------------------------------------------------------------------
# Projects & tasks
# ---------------------------------------------------------------------------


class TestCatalogRows:
    def test_list_projects_nests_tasks(self, store):
        with store.transaction():
            pid = store.insert_project("Work")
            store.insert_task(pid, "a")
            store.insert_task(pid, "b")
            projects = store.list_projects()
        assert [t.name for t in projects[0].tasks] == ["a", "b"]

    def test_archived_hidden_by_default(self, store):
        with store.transaction():
            keep = store.insert_project("Keep")
            gone = store.insert_project("Gone")
            t1 = store.insert_task(keep, "visible")
            t2 = store.insert_task(keep, "hidden")
            store.set_project_archived(gone, T0)
            store.set_task_archived(t2, T0)
            projects = store.list_projects()
            everything = store.list_projects(include_archived=True)
        assert [p.id for p in projects] == [keep]
        assert [t.id for t in projects[0].tasks] == [t1]
        assert [p.id for p in everything] == [keep, gone]
        assert len(everything[0].tasks) == 2

    def test_hide_done_before(self, store):
        with store.transaction():
            pid = store.insert_project("Work")
            old = store.insert_task(pid, "old")
            recent = store.insert_task(pid, "recent")
            store.set_task_done(old, T0 - 100)
            store.set_task_done(recent, T0)
            tasks = store.list_projects(hide_done_before=T0 - 50)[0].tasks
        assert [t.id for t in tasks] == [recent]

    def test_ids_never_reused(self, store):
        with store.transaction():
            first = store.insert_project("A")
            store.delete_project(first)
            second = store.insert_project("B")
        assert second > first

    def test_delete_project_cascades_tasks(self, store):
        with store.transaction():
            pid = store.insert_project("Work")
            tid = store.insert_task(pid, "a")
            store.delete_project(pid)
            assert store.get_task(tid) is None

    def test_project_names_include_archived(self, store):
        with store.transaction():
            pid = store.insert_project("Old")
            store.set_project_archived(pid, T0)
            assert store.project_names() == {pid: ("Old", True)}


# ---------------------------------------------------------------------------
# App state & settings
# ---------------------------------------------------------------------------


class TestAppState:
    def test_current_index_defaults_to_zero(self, store):
        with store.transaction():
            assert store.current_project_index() == 0

    def test_corrupt_index_reads_as_zero(self, store):
        with store.transaction():
            store.set_state("current_project_index", "garbage")
            assert store.current_project_index() == 0

    def test_settings_roundtrip(self, store):
        settings = EngineSettings(
            allow_multiple=True, min_session_seconds=3, hide_done_after_seconds=600
        )
        with store.transaction():
            store.save_settings(settings)
            assert store.load_settings() == settings

    def test_clearing_hide_done(self, store):
        with store.transaction():
            store.save_settings(EngineSettings(hide_done_after_seconds=600))
            store.save_settings(EngineSettings())
            assert store.load_settings().hide_done_after_seconds is None


# ---------------------------------------------------------------------------
# Sessions & ledger
# ---------------------------------------------------------------------------


class TestLedger:
    def test_time_entry_duration(self, store):
        with store.transaction():
            entry = store.insert_time_entry(1, 1, 100, 160)
        assert entry.duration_seconds == 60
        assert entry.id == 1

    def test_negative_duration_rejected(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction():
                store.insert_time_entry(1, 1, 200, 100)

    def test_time_entries_filter_on_start(self, store):
        with store.transaction():
            store.insert_time_entry(1, 1, 100, 200)
            store.insert_time_entry(1, 1, 300, 400)
            store.insert_time_entry(1, 1, 500, 600)
            entries = store.time_entries(150, 500)
        assert [e.start_time for e in entries] == [300, 500]

    def test_ledger_seconds(self, store):
        with store.transaction():
            store.insert_time_entry(1, 7, 0, 30)
            store.insert_time_entry(1, 7, 50, 80)
            assert store.ledger_seconds(7) == 60
            assert store.ledger_seconds(8) == 0

    def test_one_session_per_task(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            with store.transaction():
                store.insert_session(ActiveSession(1, 1, T0))
                store.insert_session(ActiveSession(1, 1, T0 + 1))


class TestReset:
    def test_reset_clears_everything(self, store):
        with store.transaction():
            pid = store.insert_project("Work")
            tid = store.insert_task(pid, "a")
            store.insert_session(ActiveSession(pid, tid, T0))
            store.insert_time_entry(pid, tid, 0, 10)
            store.set_current_project_index(3)
            store.reset()
            assert store.list_projects(include_archived=True) == []
            assert store.active_sessions() == []
            assert store.time_entries() == []
            assert store.current_project_index() == 0

    def test_reset_restarts_ids(self, store):
        with store.transaction():
            store.insert_project("A")
            store.insert_project("B")
            store.reset()
            assert store.insert_project("C") == 1


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_sessions_survive_reopen(self, db_path):
        with Store.open(db_path, FakeClock()) as s:
            with s.transaction():
                pid = s.insert_project("Work")
                tid = s.insert_task(pid, "a")
                s.insert_session(ActiveSession(pid, tid, T0))

        with Store.open(db_path, FakeClock(T0 + 90)) as s:
            with s.transaction():
                sessions = s.active_sessions()
                now = s.now()
        assert sessions == [ActiveSession(pid, tid, T0)]
        assert sessions[0].elapsed(now) == 90


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------


class TestMigration:
    def _legacy_db(self, path):
        """A database as the first release left it, archive/done columns included."""
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path)
        conn.executescript(
            """
            CREATE TABLE projects (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                current_task_index INTEGER NOT NULL DEFAULT 0,
                archived INTEGER NOT NULL DEFAULT 0,
                archived_at INTEGER
            );
            CREATE TABLE tasks (
                id INTEGER PRIMARY KEY,
                project_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                time_seconds INTEGER NOT NULL DEFAULT 0,
                archived INTEGER NOT NULL DEFAULT 0,
                done INTEGER NOT NULL DEFAULT 0,
                done_at INTEGER,
                archived_at INTEGER,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            );
            CREATE TABLE app_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            CREATE TABLE active_tracking (
                id INTEGER PRIMARY KEY,
                project_id INTEGER NOT NULL,
                task_id INTEGER NOT NULL,
                started_at INTEGER NOT NULL
            );
            CREATE TABLE time_entries (
                id INTEGER PRIMARY KEY,
                project_id INTEGER NOT NULL,
                task_id INTEGER NOT NULL,
                start_time INTEGER NOT NULL,
                end_time INTEGER NOT NULL,
                duration_seconds INTEGER NOT NULL,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                FOREIGN KEY (task_id) REFERENCES tasks(id) ON DELETE CASCADE
            );
            INSERT INTO projects (id, name, archived) VALUES (1, 'Live', 0), (2, 'Old', 1);
            INSERT INTO tasks (id, project_id, name, time_seconds, done, archived) VALUES
                (1, 1, 'open', 0, 0, 0),
                (2, 1, 'finished', 300, 1, 0),
                (3, 2, 'shelved', 60, 0, 1);
            INSERT INTO app_state VALUES ('current_project_index', '0');
            INSERT INTO active_tracking (id, project_id, task_id, started_at) VALUES (1, 1, 1, 1000);
            INSERT INTO time_entries VALUES (1, 1, 2, 700, 1000, 300), (2, 2, 3, 100, 160, 60);
            """
        )
        conn.commit()
        conn.close()

    def test_flags_become_timestamps(self, db_path):
        self._legacy_db(db_path)
        with Store.open(db_path, FakeClock()) as s:
            with s.transaction():
                projects = s.list_projects(include_archived=True)
        live, old = projects
        assert live.archived_at is None
        assert old.archived_at == T0
        assert live.tasks[0].done_at is None
        assert live.tasks[1].done_at == T0
        assert old.tasks[0].archived_at == T0

    def test_active_tracking_moves_to_sessions(self, db_path):
        self._legacy_db(db_path)
        with Store.open(db_path, FakeClock()) as s:
            with s.transaction():
                assert s.active_sessions() == [ActiveSession(1, 1, 1000)]
                assert [e.duration_seconds for e in s.time_entries()] == [60, 300]

        conn = sqlite3.connect(db_path)
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert "active_tracking" not in tables
        assert not any(t.endswith("_new") for t in tables)

    def test_ledger_loses_foreign_keys(self, db_path):
        self._legacy_db(db_path)
        Store.open(db_path, FakeClock()).close()
        conn = sqlite3.connect(db_path)
        fks = conn.execute("PRAGMA foreign_key_list(time_entries)").fetchall()
        version = conn.execute("PRAGMA user_version").fetchone()[0]
        conn.close()
        assert fks == []
        assert version == SCHEMA_VERSION

    def test_task_delete_keeps_history(self, db_path):
        self._legacy_db(db_path)
        with Engine.open(db_path, FakeClock()) as eng:
            eng.catalog.archive_task(1, 2)
            eng.catalog.delete_task_permanent(2)
            entries = eng.stats.time_entries()
        assert [(e.task_id, e.duration_seconds) for e in entries] == [(3, 60), (2, 300)]

    def test_project_delete_keeps_history(self, db_path):
        self._legacy_db(db_path)
        with Engine.open(db_path, FakeClock()) as eng:
            eng.catalog.delete_project_permanent(2)
            assert eng.catalog.list_projects(include_archived=True)[0].name == "Live"
            stats = eng.stats.project_time_stats(0, T0)
        assert (stats[1].project_id, stats[1].name) == (2, UNKNOWN_PROJECT)
        assert stats[1].deleted is True
        assert stats[1].total_seconds == 60

    def test_deleted_ids_not_reused(self, db_path):
        self._legacy_db(db_path)
        with Engine.open(db_path, FakeClock()) as eng:
            eng.catalog.archive_task(2, 3)
            eng.catalog.delete_task_permanent(3)
            eng.catalog.delete_project_permanent(2)
            project = eng.catalog.add_task(1, "fresh")
            projects = eng.catalog.add_project("New")
        assert project.tasks[-1].id == 4
        assert projects[-1].id == 3

    def test_ids_start_past_orphaned_references(self, db_path):
        self._legacy_db(db_path)
        conn = sqlite3.connect(db_path)
        conn.execute("INSERT INTO time_entries VALUES (9, 7, 12, 200, 260, 60)")
        conn.commit()
        conn.close()
        with Engine.open(db_path, FakeClock()) as eng:
            projects = eng.catalog.add_project("New")
            project = eng.catalog.add_task(1, "fresh")
            eng.tracking.stop_tracking()
            entries = eng.stats.time_entries()
        assert projects[-1].id == 8
        assert project.tasks[-1].id == 13
        assert entries[-1].id == 10
