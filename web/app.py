"""Web API — the engine's command surface over JSON.

Routes:
  GET    /api/overview                                 -> full snapshot
  GET    /api/projects?include_archived=               -> projects with tasks
  GET    /api/current-index, PUT /api/current-index    -> get / select project index
  GET    /api/current-project                          -> project at the current index
  POST   /api/rotate/project?track=                    -> (index, project)
  POST   /api/rotate/task?project_id=&track=           -> task or null
  GET    /api/sessions                                 -> active sessions
  POST   /api/sessions/start, /api/sessions/stop       -> start / finalize sessions
  POST   /api/projects, /api/projects/{id}/tasks       -> add project / task
  PATCH  /api/projects/{id}, /api/projects/{id}/tasks/{tid}   -> rename
  POST   /api/projects/{id}/archive|restore            -> archive / restore project
  POST   /api/projects/{id}/tasks/{tid}/archive|restore -> archive / restore task
  PUT    /api/projects/{id}/tasks/{tid}/done           -> set / clear done
  DELETE /api/projects/{id}, /api/tasks/{tid}          -> permanent delete
  GET    /api/stats/hourly|daily|projects, /api/entries -> ledger aggregates
  GET    /api/overlay                                  -> drain stop queue, timer feed
  POST   /api/overlay/stop/{task_id}                   -> queue a stop request
  GET    /api/status-title                             -> menu-bar title
  GET    /api/settings, PATCH /api/settings            -> engine settings
  POST   /api/reset                                    -> erase everything

The overlay display polls GET /api/overlay every POLL_INTERVAL_SEC.
All API errors return consistent JSON: {"error": "message", "code": "ERROR_CODE"}
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import UTC
from pathlib import Path

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Ensure rotator is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rotator.engine import Engine
from rotator.errors import InvalidState, NotFound, OutOfRange, StorageUnavailable

logger = logging.getLogger("rotator.web")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the engine at startup and close it at shutdown."""
    app.state.engine = Engine.open()
    logger.info("Engine opened")
    try:
        yield
    finally:
        app.state.engine.close()
        app.state.engine = None


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class NameBody(BaseModel):
    name: str


class IndexBody(BaseModel):
    index: int


class StartBody(BaseModel):
    project_id: int
    task_id: int
    allow_multiple: bool | None = None


class StopBody(BaseModel):
    task_id: int | None = None


class DoneBody(BaseModel):
    done: bool


class SettingsBody(BaseModel):
    allow_multiple: bool | None = None
    min_session_seconds: int | None = None
    hide_done_after_seconds: int | None = None


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------


def _error_response(message: str, code: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message, "code": code}, status_code=status_code)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error_response(str(exc), "NOT_FOUND", 404)


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return _error_response(str(exc), "INVALID_STATE", 409)


@app.exception_handler(OutOfRange)
async def out_of_range_handler(request: Request, exc: OutOfRange):
    return _error_response(str(exc), "OUT_OF_RANGE", 400)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    logger.warning("ValueError on %s: %s", request.url.path, exc)
    return _error_response(str(exc), "VALIDATION_ERROR", 400)


@app.exception_handler(StorageUnavailable)
async def storage_error_handler(request: Request, exc: StorageUnavailable):
    logger.error("Storage unavailable on %s: %s", request.url.path, exc)
    return _error_response("Storage unavailable", "STORAGE_UNAVAILABLE", 503)


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url.path, exc, exc_info=True)
    return _error_response("Internal server error", "INTERNAL_ERROR", 500)


def _projects(projects) -> JSONResponse:
    return JSONResponse([asdict(p) for p in projects])


# ---------------------------------------------------------------------------
# Overview & rotation
# ---------------------------------------------------------------------------


@app.get("/api/overview")
def api_overview(engine: Engine = Depends(get_engine)):
    return JSONResponse(engine.build_overview())


@app.get("/api/projects")
def api_projects(
    include_archived: bool = Query(False), engine: Engine = Depends(get_engine)
):
    return _projects(engine.catalog.list_projects(include_archived=include_archived))


@app.get("/api/current-index")
def api_current_index(engine: Engine = Depends(get_engine)):
    return JSONResponse({"current_project_index": engine.rotation.current_project_index()})


@app.put("/api/current-index")
def api_select_project(body: IndexBody, engine: Engine = Depends(get_engine)):
    return JSONResponse({"current_project_index": engine.rotation.select_project(body.index)})


@app.get("/api/current-project")
def api_current_project(engine: Engine = Depends(get_engine)):
    project = engine.rotation.current_project()
    return JSONResponse(asdict(project) if project else None)


@app.post("/api/rotate/project")
def api_rotate_project(track: bool = Query(False), engine: Engine = Depends(get_engine)):
    index, project = engine.rotation.rotate_project(track=track)
    return JSONResponse({"index": index, "project": asdict(project) if project else None})


@app.post("/api/rotate/task")
def api_rotate_task(
    project_id: int | None = Query(None),
    track: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    task = engine.rotation.rotate_task(project_id, track=track)
    return JSONResponse(asdict(task) if task else None)


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------


@app.get("/api/sessions")
def api_sessions(engine: Engine = Depends(get_engine)):
    return JSONResponse([asdict(s) for s in engine.tracking.active_sessions()])


@app.post("/api/sessions/start")
def api_start(body: StartBody, engine: Engine = Depends(get_engine)):
    sessions = engine.tracking.start_tracking(
        body.project_id, body.task_id, allow_multiple=body.allow_multiple
    )
    return JSONResponse([asdict(s) for s in sessions])


@app.post("/api/sessions/stop")
def api_stop(body: StopBody | None = None, engine: Engine = Depends(get_engine)):
    stopped = engine.tracking.stop_tracking(body.task_id if body else None)
    return JSONResponse({"stopped": {str(k): v for k, v in (stopped or {}).items()}})


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@app.post("/api/projects")
def api_add_project(body: NameBody, engine: Engine = Depends(get_engine)):
    return _projects(engine.catalog.add_project(body.name))


@app.patch("/api/projects/{project_id}")
def api_rename_project(project_id: int, body: NameBody, engine: Engine = Depends(get_engine)):
    return _projects(engine.catalog.rename_project(project_id, body.name))


@app.post("/api/projects/{project_id}/archive")
def api_archive_project(project_id: int, engine: Engine = Depends(get_engine)):
    return _projects(engine.catalog.archive_project(project_id))


@app.post("/api/projects/{project_id}/restore")
def api_restore_project(project_id: int, engine: Engine = Depends(get_engine)):
    return _projects(engine.catalog.restore_project(project_id))


@app.delete("/api/projects/{project_id}")
def api_delete_project(
    project_id: int,
    purge_history: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    deleted = engine.catalog.delete_project_permanent(project_id, purge_history=purge_history)
    return JSONResponse({"deleted": deleted})


@app.post("/api/projects/{project_id}/tasks")
def api_add_task(project_id: int, body: NameBody, engine: Engine = Depends(get_engine)):
    return JSONResponse(asdict(engine.catalog.add_task(project_id, body.name)))


@app.patch("/api/projects/{project_id}/tasks/{task_id}")
def api_rename_task(
    project_id: int, task_id: int, body: NameBody, engine: Engine = Depends(get_engine)
):
    return JSONResponse(asdict(engine.catalog.rename_task(project_id, task_id, body.name)))


@app.post("/api/projects/{project_id}/tasks/{task_id}/archive")
def api_archive_task(project_id: int, task_id: int, engine: Engine = Depends(get_engine)):
    return JSONResponse(asdict(engine.catalog.archive_task(project_id, task_id)))


@app.post("/api/projects/{project_id}/tasks/{task_id}/restore")
def api_restore_task(project_id: int, task_id: int, engine: Engine = Depends(get_engine)):
    return JSONResponse(asdict(engine.catalog.restore_task(project_id, task_id)))


@app.put("/api/projects/{project_id}/tasks/{task_id}/done")
def api_task_done(
    project_id: int, task_id: int, body: DoneBody, engine: Engine = Depends(get_engine)
):
    project = engine.catalog.toggle_task_done(project_id, task_id, body.done)
    return JSONResponse(asdict(project))


@app.delete("/api/tasks/{task_id}")
def api_delete_task(
    task_id: int,
    purge_history: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    deleted = engine.catalog.delete_task_permanent(task_id, purge_history=purge_history)
    return JSONResponse({"deleted": deleted})


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@app.get("/api/stats/hourly")
def api_hourly(
    start_time: int = Query(...),
    end_time: int = Query(...),
    utc: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    rows = engine.stats.hourly_activity(start_time, end_time, tz=UTC if utc else None)
    return JSONResponse([asdict(r) for r in rows])


@app.get("/api/stats/daily")
def api_daily(
    start_time: int = Query(...),
    end_time: int = Query(...),
    utc: bool = Query(False),
    engine: Engine = Depends(get_engine),
):
    rows = engine.stats.daily_activity(start_time, end_time, tz=UTC if utc else None)
    return JSONResponse([asdict(r) for r in rows])


@app.get("/api/stats/projects")
def api_project_stats(
    start_time: int = Query(...),
    end_time: int = Query(...),
    engine: Engine = Depends(get_engine),
):
    return JSONResponse([asdict(r) for r in engine.stats.project_time_stats(start_time, end_time)])


@app.get("/api/entries")
def api_entries(
    start_time: int | None = Query(None),
    end_time: int | None = Query(None),
    engine: Engine = Depends(get_engine),
):
    return JSONResponse([asdict(e) for e in engine.stats.time_entries(start_time, end_time)])


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------


@app.get("/api/overlay")
def api_overlay(engine: Engine = Depends(get_engine)):
    return JSONResponse([asdict(e) for e in engine.overlay.poll()])


@app.post("/api/overlay/stop/{task_id}")
def api_overlay_stop(task_id: int, engine: Engine = Depends(get_engine)):
    engine.overlay.request_stop(task_id)
    return JSONResponse({"queued": task_id, "pending": len(engine.overlay.queue)})


@app.get("/api/status-title")
def api_status_title(engine: Engine = Depends(get_engine)):
    return JSONResponse({"title": engine.overlay.status_title()})


# ---------------------------------------------------------------------------
# Settings & maintenance
# ---------------------------------------------------------------------------


@app.get("/api/settings")
def api_settings(engine: Engine = Depends(get_engine)):
    return JSONResponse(asdict(engine.get_settings()))


@app.patch("/api/settings")
def api_update_settings(body: SettingsBody, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    return JSONResponse(asdict(engine.update_settings(**changes)))


@app.post("/api/reset")
def api_reset(confirm: bool = Query(False), engine: Engine = Depends(get_engine)):
    if not confirm:
        return _error_response("Pass confirm=true to erase all data", "CONFIRMATION_REQUIRED", 400)
    return _projects(engine.catalog.reset_store())
