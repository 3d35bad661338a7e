"""FastAPI application exposing the Trackly REST API."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import SyncSettings
from .errors import InvalidTimerStateError, NotFoundError
from .models import ActiveTimer, Project, TimeEntry, from_wire_time, to_wire_time, utc_now
from .paths import get_db_path
from .scheduler import SyncScheduler
from .sinks import FileSink
from .store import Stores
from .sync import LoadResult, SaveResult, engine_from_settings
from .timer import TimerService
from .timing import PERIODS, display_elapsed_seconds, period_start

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ProjectCreate(_Payload):
    name: str = Field(min_length=1)
    color: Optional[str] = None
    planned_hours_per_day: Optional[float] = Field(default=None, alias="plannedHoursPerDay")


class ProjectUpdate(_Payload):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None
    planned_hours_per_day: Optional[float] = Field(default=None, alias="plannedHoursPerDay")


class TimeEntryCreate(_Payload):
    project_id: str = Field(alias="projectId")
    start_time: datetime = Field(alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    duration: int = Field(ge=0)
    description: Optional[str] = None


class TimeEntryUpdate(_Payload):
    project_id: Optional[str] = Field(default=None, alias="projectId")
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    end_time: Optional[datetime] = Field(default=None, alias="endTime")
    duration: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None


class TimerProject(_Payload):
    project_id: str = Field(alias="projectId")


class VisibilityPayload(_Payload):
    hidden: bool


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[SyncSettings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or SyncSettings()
    now = clock or utc_now

    stores = Stores.open(resolved_db_path)
    timer_service = TimerService(stores, clock=now)
    engine = engine_from_settings(stores, resolved_settings, clock=now)
    scheduler = SyncScheduler(engine, resolved_settings)
    shared_files = FileSink(resolved_settings.sync_dir)

    app = FastAPI(title="Trackly", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.stores = stores
    app.state.timer_service = timer_service
    app.state.sync_engine = engine
    app.state.sync_scheduler = scheduler

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTimerStateError)
    async def _invalid_state(request: Request, exc: InvalidTimerStateError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        if resolved_settings.load_on_startup:
            result = engine.load_snapshot()
            logger.info("Startup sync: %s", result.message)
        if resolved_settings.auto_sync:
            scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        scheduler.stop()
        scheduler.flush()

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "timestamp": to_wire_time(now())}

    # Projects

    @app.get("/api/projects")
    def list_projects() -> list[Dict[str, Any]]:
        return [project.to_wire() for project in stores.projects.list_all()]

    @app.get("/api/projects/{project_id}")
    def get_project(project_id: str) -> Dict[str, Any]:
        project = stores.projects.get(project_id)
        if project is None:
            raise HTTPException(status_code=404, detail="Project not found")
        return project.to_wire()

    @app.post("/api/projects", status_code=201)
    def create_project(payload: ProjectCreate) -> Dict[str, Any]:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="name is required")
        project = stores.projects.create(
            name,
            color=payload.color,
            planned_hours_per_day=payload.planned_hours_per_day,
            created_at=now(),
        )
        return project.to_wire()

    @app.put("/api/projects/{project_id}")
    def update_project(project_id: str, payload: ProjectUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        return stores.projects.update(project_id, **updates).to_wire()

    @app.delete("/api/projects/{project_id}", status_code=204)
    def delete_project(project_id: str) -> Response:
        removed = stores.projects.delete(project_id)
        logger.info("Deleted project %s with %d time entries", project_id, removed)
        return Response(status_code=204)

    # Time entries

    @app.get("/api/time-entries")
    def list_time_entries(
        project_id: Optional[str] = Query(default=None, alias="projectId"),
        period: Optional[str] = Query(
            default=None,
            description="Restrict to the current day, week or month.",
        ),
    ) -> list[Dict[str, Any]]:
        since = None
        if period is not None:
            if period not in PERIODS:
                raise HTTPException(
                    status_code=400, detail=f"period must be one of {', '.join(PERIODS)}"
                )
            since = period_start(period, now())
        entries = stores.time_entries.list_all(project_id=project_id, since=since)
        projects = {project.id: project for project in stores.projects.list_all()}
        return [_entry_payload(entry, projects.get(entry.project_id)) for entry in entries]

    @app.get("/api/time-entries/{entry_id}")
    def get_time_entry(entry_id: str) -> Dict[str, Any]:
        entry = stores.time_entries.get(entry_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Time entry not found")
        return _entry_payload(entry, stores.projects.get(entry.project_id))

    @app.post("/api/time-entries", status_code=201)
    def create_time_entry(payload: TimeEntryCreate) -> Dict[str, Any]:
        entry = stores.time_entries.create(
            payload.project_id,
            from_wire_time(payload.start_time),
            payload.duration,
            end_time=from_wire_time(payload.end_time) if payload.end_time else None,
            description=payload.description,
        )
        return _entry_payload(entry, stores.projects.get(entry.project_id))

    @app.put("/api/time-entries/{entry_id}")
    def update_time_entry(entry_id: str, payload: TimeEntryUpdate) -> Dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True)
        for key in ("start_time", "end_time"):
            if updates.get(key) is not None:
                updates[key] = from_wire_time(updates[key])
        if "start_time" in updates and updates["start_time"] is None:
            raise HTTPException(status_code=400, detail="startTime cannot be null")
        if "duration" in updates and updates["duration"] is None:
            raise HTTPException(status_code=400, detail="duration cannot be null")
        if "project_id" in updates and updates["project_id"] is None:
            raise HTTPException(status_code=400, detail="projectId cannot be null")
        entry = stores.time_entries.update(entry_id, **updates)
        return _entry_payload(entry, stores.projects.get(entry.project_id))

    @app.delete("/api/time-entries/{entry_id}", status_code=204)
    def delete_time_entry(entry_id: str) -> Response:
        stores.time_entries.delete(entry_id)
        return Response(status_code=204)

    # Active timer

    @app.get("/api/timer")
    def get_timer() -> Optional[Dict[str, Any]]:
        timer = timer_service.current()
        return _timer_payload(timer, stores.projects.get(timer.project_id), now()) if timer else None

    @app.post("/api/timer/start", status_code=201)
    def start_timer(payload: TimerProject) -> Dict[str, Any]:
        result = timer_service.start(payload.project_id)
        body = _timer_payload(result.timer, stores.projects.get(result.timer.project_id), now())
        body["finalizedEntry"] = (
            result.finalized_entry.to_wire() if result.finalized_entry else None
        )
        return body

    @app.post("/api/timer/stop")
    def stop_timer() -> Dict[str, Any]:
        entry = timer_service.stop()
        return _entry_payload(entry, stores.projects.get(entry.project_id))

    @app.post("/api/timer/pause")
    def pause_timer() -> Dict[str, Any]:
        timer = timer_service.pause()
        return _timer_payload(timer, stores.projects.get(timer.project_id), now())

    @app.post("/api/timer/resume")
    def resume_timer() -> Dict[str, Any]:
        timer = timer_service.resume()
        return _timer_payload(timer, stores.projects.get(timer.project_id), now())

    @app.put("/api/timer/project")
    def switch_timer_project(payload: TimerProject) -> Dict[str, Any]:
        timer = timer_service.switch_project(payload.project_id)
        return _timer_payload(timer, stores.projects.get(timer.project_id), now())

    # Synchronization

    @app.post("/api/sync/save")
    def sync_save() -> Dict[str, Any]:
        return _save_payload(engine.save_snapshot())

    @app.post("/api/sync/load")
    def sync_load() -> Dict[str, Any]:
        return _load_payload(engine.load_snapshot())

    @app.get("/api/sync/status")
    def sync_status() -> Dict[str, Any]:
        status = engine.status()
        return {
            "lastSync": to_wire_time(status.last_sync) if status.last_sync else None,
            "isSyncing": status.is_syncing,
            "error": status.error,
            "lastTarget": status.last_target,
            "autoSync": scheduler.is_running(),
        }

    @app.post("/api/sync/visibility")
    def sync_visibility(payload: VisibilityPayload) -> Dict[str, Any]:
        result = scheduler.on_visibility_change(payload.hidden)
        if isinstance(result, SaveResult):
            return _save_payload(result)
        return _load_payload(result)

    @app.get("/api/sync/export")
    def sync_export() -> JSONResponse:
        snapshot = engine.build_snapshot()
        stamp = now().strftime("%Y-%m-%dT%H-%M-%S")
        return JSONResponse(
            content=snapshot,
            headers={
                "Content-Disposition": f'attachment; filename="trackly-export-{stamp}.json"'
            },
        )

    @app.post("/api/sync/import")
    def sync_import(payload: Dict[str, Any]) -> Dict[str, Any]:
        return _load_payload(engine.import_snapshot(payload))

    # Shared snapshot files, used by other instances' remote sinks.

    @app.post("/api/save-sync/{key}")
    def save_sync_file(key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            written = shared_files.write(key, payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not written:
            raise HTTPException(status_code=500, detail="Failed to store sync file")
        return {"success": True}

    @app.get("/api/sync-files/{key}")
    def read_sync_file(key: str) -> Dict[str, Any]:
        try:
            payload = shared_files.read(key)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if payload is None:
            raise HTTPException(status_code=404, detail="Sync file not found")
        return payload

    return app


def _entry_payload(entry: TimeEntry, project: Optional[Project]) -> Dict[str, Any]:
    payload = entry.to_wire()
    payload["project"] = project.to_wire() if project else None
    return payload


def _timer_payload(
    timer: ActiveTimer, project: Optional[Project], now: datetime
) -> Dict[str, Any]:
    payload = timer.to_wire()
    payload["project"] = project.to_wire() if project else None
    payload["elapsedSeconds"] = display_elapsed_seconds(timer, now)
    return payload


def _save_payload(result: SaveResult) -> Dict[str, Any]:
    return {
        "success": result.success,
        "message": result.message,
        "target": result.target,
        "skipped": result.skipped,
    }


def _load_payload(result: LoadResult) -> Dict[str, Any]:
    payload = result.as_dict()
    payload.update(
        {
            "source": result.source,
            "projects": result.projects,
            "timeEntries": result.time_entries,
            "activeTimerRestored": result.active_timer_restored,
        }
    )
    return payload
