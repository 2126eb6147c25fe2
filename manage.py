#!/usr/bin/env python3
"""CLI entry point for the rotator engine.

Usage:
    python manage.py [--db PATH] [--verbose] <command> [options]

All output is JSON — easy to parse by scripts, hotkey daemons and the
menu-bar helper. Errors are printed as {"error": ..., "code": ...} and
exit with a non-zero status.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import asdict
from datetime import UTC
from pathlib import Path

# Add parent dir to path so `from rotator import ...` works
sys.path.insert(0, str(Path(__file__).parent))

from rotator import config
from rotator.demo import seed_demo_data
from rotator.engine import Engine
from rotator.errors import InvalidState, NotFound, OutOfRange, StorageUnavailable
from rotator.logging_setup import setup_logging
from rotator.validation import validate_port


def _on_off(value: str) -> bool:
    if value not in ("on", "off"):
        raise argparse.ArgumentTypeError("expected 'on' or 'off'")
    return value == "on"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Project/task rotator and time tracker")
    parser.add_argument("--db", type=Path, help="Database path (default: data dir)")
    parser.add_argument("--verbose", action="store_true", help="Log to stderr")
    sub = parser.add_subparsers(dest="command")

    # --- Catalog queries ---
    p = sub.add_parser("list-projects", help="List projects with their tasks")
    p.add_argument("--all", action="store_true", help="Include archived projects and tasks")

    sub.add_parser("overview", help="Full engine snapshot")

    # --- Rotation ---
    p = sub.add_parser("current-index", help="Get or set the current project index")
    p.add_argument("--set", type=int, dest="index", help="Select this project index")

    sub.add_parser("current-project", help="Show the current project")

    p = sub.add_parser("rotate-project", help="Advance to the next project")
    p.add_argument("--track", action="store_true", help="Start tracking its current task")

    p = sub.add_parser("rotate-task", help="Advance to the next active task")
    p.add_argument("--project", type=int, help="Project id (default: current project)")
    p.add_argument("--track", action="store_true", help="Start tracking the new task")

    # --- Tracking ---
    sub.add_parser("active-sessions", help="List active tracking sessions")

    p = sub.add_parser("start", help="Start tracking a task")
    p.add_argument("--project", type=int, required=True, help="Project id")
    p.add_argument("--task", type=int, required=True, help="Task id")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--multiple", dest="allow_multiple", action="store_const", const=True,
                       help="Keep other sessions running")
    group.add_argument("--single", dest="allow_multiple", action="store_const", const=False,
                       help="Stop other sessions first")

    p = sub.add_parser("stop", help="Stop tracking (all sessions by default)")
    p.add_argument("--task", type=int, help="Stop only this task")

    # --- Catalog edits ---
    p = sub.add_parser("add-project", help="Add a project")
    p.add_argument("--name", required=True)

    p = sub.add_parser("add-task", help="Add a task to a project")
    p.add_argument("project_id", type=int)
    p.add_argument("--name", required=True)

    p = sub.add_parser("rename-project", help="Rename a project")
    p.add_argument("project_id", type=int)
    p.add_argument("--name", required=True)

    p = sub.add_parser("rename-task", help="Rename a task")
    p.add_argument("project_id", type=int)
    p.add_argument("task_id", type=int)
    p.add_argument("--name", required=True)

    p = sub.add_parser("archive-project", help="Archive a project")
    p.add_argument("project_id", type=int)

    p = sub.add_parser("archive-task", help="Archive a task")
    p.add_argument("project_id", type=int)
    p.add_argument("task_id", type=int)

    p = sub.add_parser("restore-project", help="Restore an archived project")
    p.add_argument("project_id", type=int)

    p = sub.add_parser("restore-task", help="Restore an archived task")
    p.add_argument("project_id", type=int)
    p.add_argument("task_id", type=int)

    p = sub.add_parser("delete-project", help="Permanently delete an archived project")
    p.add_argument("project_id", type=int)
    p.add_argument("--purge-history", action="store_true", help="Also delete its ledger rows")

    p = sub.add_parser("delete-task", help="Permanently delete an archived task")
    p.add_argument("task_id", type=int)
    p.add_argument("--purge-history", action="store_true", help="Also delete its ledger rows")

    p = sub.add_parser("done", help="Mark a task done (or not done with --undo)")
    p.add_argument("project_id", type=int)
    p.add_argument("task_id", type=int)
    p.add_argument("--undo", action="store_true")

    # --- Stats ---
    for name, help_text in (
        ("hourly", "Seconds per hour of day"),
        ("daily", "Seconds per calendar day"),
        ("project-stats", "Seconds per project"),
        ("entries", "Raw ledger rows"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--start", type=int, required=name != "entries", help="Epoch seconds")
        p.add_argument("--end", type=int, required=name != "entries", help="Epoch seconds")
        p.add_argument("--utc", action="store_true", help="Bucket in UTC instead of local time")

    # --- Overlay ---
    sub.add_parser("overlay", help="Timer feed for the always-on-top display")

    p = sub.add_parser("overlay-stop", help="Queue a stop request and drain the queue")
    p.add_argument("task_id", type=int)

    sub.add_parser("status-title", help="Menu-bar title string")

    # --- Settings & maintenance ---
    p = sub.add_parser("settings", help="Show or change engine settings")
    p.add_argument("--allow-multiple", type=_on_off, help="on|off")
    p.add_argument("--min-session", type=int, help="Minimum seconds for a session to count")
    p.add_argument("--hide-done-after", type=int, help="Hide done tasks after N seconds")
    p.add_argument("--no-hide-done", action="store_true", help="Always show done tasks")

    sub.add_parser("seed-demo", help="Add demo projects with a month of history")

    p = sub.add_parser("reset", help="Erase all data, ledger included")
    p.add_argument("--yes", action="store_true", required=True, help="Confirm the reset")

    # --- Web server ---
    p = sub.add_parser("serve", help="Start the JSON API server")
    p.add_argument("--port", type=int, default=config.DEFAULT_PORT)
    p.add_argument("--host", default=config.DEFAULT_HOST)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)

    if args.command == "serve":
        _serve(args.host, args.port, args.db)
        return

    try:
        with Engine.open(args.db) as engine:
            result = _dispatch(args, engine)
    except (NotFound, InvalidState, OutOfRange, ValueError, StorageUnavailable) as exc:
        print(json.dumps(_error_payload(exc), indent=2, ensure_ascii=False))
        sys.exit(1)

    print(json.dumps(result, indent=2, ensure_ascii=False))


def _error_payload(exc: Exception) -> dict:
    if isinstance(exc, NotFound):
        code = "NOT_FOUND"
    elif isinstance(exc, InvalidState):
        code = "INVALID_STATE"
    elif isinstance(exc, OutOfRange):
        code = "OUT_OF_RANGE"
    elif isinstance(exc, StorageUnavailable):
        code = "STORAGE_UNAVAILABLE"
    else:
        code = "VALIDATION_ERROR"
    return {"error": str(exc), "code": code}


def _projects(projects) -> list[dict]:
    return [asdict(p) for p in projects]


def _dispatch(args: argparse.Namespace, engine: Engine) -> dict | list | str | None:
    cmd = args.command

    if cmd == "list-projects":
        return _projects(engine.catalog.list_projects(include_archived=args.all))

    if cmd == "overview":
        return engine.build_overview()

    if cmd == "current-index":
        if args.index is not None:
            return {"current_project_index": engine.rotation.select_project(args.index)}
        return {"current_project_index": engine.rotation.current_project_index()}

    if cmd == "current-project":
        project = engine.rotation.current_project()
        return asdict(project) if project else None

    if cmd == "rotate-project":
        index, project = engine.rotation.rotate_project(track=args.track)
        return {"index": index, "project": asdict(project) if project else None}

    if cmd == "rotate-task":
        task = engine.rotation.rotate_task(args.project, track=args.track)
        return asdict(task) if task else None

    if cmd == "active-sessions":
        return [asdict(s) for s in engine.tracking.active_sessions()]

    if cmd == "start":
        sessions = engine.tracking.start_tracking(
            args.project, args.task, allow_multiple=args.allow_multiple
        )
        return [asdict(s) for s in sessions]

    if cmd == "stop":
        stopped = engine.tracking.stop_tracking(args.task)
        return {"stopped": stopped or {}}

    if cmd == "add-project":
        return _projects(engine.catalog.add_project(args.name))

    if cmd == "add-task":
        return asdict(engine.catalog.add_task(args.project_id, args.name))

    if cmd == "rename-project":
        return _projects(engine.catalog.rename_project(args.project_id, args.name))

    if cmd == "rename-task":
        return asdict(engine.catalog.rename_task(args.project_id, args.task_id, args.name))

    if cmd == "archive-project":
        return _projects(engine.catalog.archive_project(args.project_id))

    if cmd == "archive-task":
        return asdict(engine.catalog.archive_task(args.project_id, args.task_id))

    if cmd == "restore-project":
        return _projects(engine.catalog.restore_project(args.project_id))

    if cmd == "restore-task":
        return asdict(engine.catalog.restore_task(args.project_id, args.task_id))

    if cmd == "delete-project":
        deleted = engine.catalog.delete_project_permanent(
            args.project_id, purge_history=args.purge_history
        )
        return {"deleted": deleted}

    if cmd == "delete-task":
        deleted = engine.catalog.delete_task_permanent(
            args.task_id, purge_history=args.purge_history
        )
        return {"deleted": deleted}

    if cmd == "done":
        return asdict(engine.catalog.toggle_task_done(args.project_id, args.task_id, not args.undo))

    if cmd in ("hourly", "daily"):
        tz = UTC if args.utc else None
        if cmd == "hourly":
            rows = engine.stats.hourly_activity(args.start, args.end, tz=tz)
        else:
            rows = engine.stats.daily_activity(args.start, args.end, tz=tz)
        return [asdict(r) for r in rows]

    if cmd == "project-stats":
        return [asdict(r) for r in engine.stats.project_time_stats(args.start, args.end)]

    if cmd == "entries":
        return [asdict(e) for e in engine.stats.time_entries(args.start, args.end)]

    if cmd == "overlay":
        return [asdict(e) for e in engine.overlay.poll()]

    if cmd == "overlay-stop":
        engine.overlay.request_stop(args.task_id)
        return {"stopped": engine.overlay.drain()}

    if cmd == "status-title":
        return {"title": engine.overlay.status_title()}

    if cmd == "settings":
        changes = {}
        if args.allow_multiple is not None:
            changes["allow_multiple"] = args.allow_multiple
        if args.min_session is not None:
            changes["min_session_seconds"] = args.min_session
        if args.hide_done_after is not None:
            changes["hide_done_after_seconds"] = args.hide_done_after
        if args.no_hide_done:
            changes["hide_done_after_seconds"] = None
        if changes:
            return asdict(engine.update_settings(**changes))
        return asdict(engine.get_settings())

    if cmd == "seed-demo":
        return _projects(seed_demo_data(engine.store))

    if cmd == "reset":
        return _projects(engine.catalog.reset_store())

    raise ValueError(f"Unknown command: {cmd}")


def _serve(host: str, port: int, db: Path | None) -> None:
    """Start the JSON API via uvicorn."""
    import uvicorn

    validate_port(port)
    if db is not None:
        os.environ["ROTATOR_HOME"] = str(db.parent)
        os.environ["ROTATOR_DB_NAME"] = db.name

    print(f"Rotator API: http://{host}:{port}", file=sys.stderr)
    uvicorn.run(
        "web.app:app",
        host=host,
        port=port,
        log_level="warning",
        app_dir=str(Path(__file__).parent),
    )


if __name__ == "__main__":
    main()
