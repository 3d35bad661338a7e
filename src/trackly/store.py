"""Persistence collaborators consumed by the timer service and the sync engine."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .db import (
    database_connection,
    delete_active_timer,
    delete_project,
    delete_time_entry,
    fetch_active_timer,
    fetch_project,
    fetch_projects,
    fetch_time_entries,
    fetch_time_entry,
    put_active_timer,
    update_project,
    update_time_entry,
    upsert_projects,
    upsert_time_entries,
)
from .errors import ProjectNotFoundError, TimeEntryNotFoundError
from .models import ActiveTimer, Project, TimeEntry, utc_now


PROJECT_COLORS = (
    "#4f46e5",
    "#7c3aed",
    "#db2777",
    "#dc2626",
    "#ea580c",
    "#ca8a04",
    "#16a34a",
    "#0891b2",
    "#2563eb",
    "#9333ea",
    "#c026d3",
    "#e11d48",
)


def generate_color() -> str:
    return random.choice(PROJECT_COLORS)


def new_id() -> str:
    return str(uuid.uuid4())


class ProjectStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def list_all(self) -> list[Project]:
        with database_connection(self.db_path) as conn:
            return fetch_projects(conn)

    def get(self, project_id: str) -> Optional[Project]:
        with database_connection(self.db_path) as conn:
            return fetch_project(conn, project_id)

    def create(
        self,
        name: str,
        *,
        color: Optional[str] = None,
        planned_hours_per_day: Optional[float] = None,
        created_at: Optional[datetime] = None,
    ) -> Project:
        project = Project(
            id=new_id(),
            name=name,
            color=color or generate_color(),
            created_at=created_at or utc_now(),
            planned_hours_per_day=planned_hours_per_day,
        )
        self.upsert_many([project])
        return project

    def update(self, project_id: str, **changes: Any) -> Project:
        with database_connection(self.db_path) as conn:
            update_project(conn, project_id, **changes)
            project = fetch_project(conn, project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def delete(self, project_id: str) -> int:
        """Delete a project and every time entry recorded against it."""
        with database_connection(self.db_path) as conn:
            return delete_project(conn, project_id)

    def upsert_many(self, projects: Iterable[Project]) -> None:
        with database_connection(self.db_path) as conn:
            upsert_projects(conn, projects)


class TimeEntryStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def list_all(
        self,
        project_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[TimeEntry]:
        with database_connection(self.db_path) as conn:
            return fetch_time_entries(conn, project_id=project_id, since=since)

    def get(self, entry_id: str) -> Optional[TimeEntry]:
        with database_connection(self.db_path) as conn:
            return fetch_time_entry(conn, entry_id)

    def create(
        self,
        project_id: str,
        start_time: datetime,
        duration: int,
        *,
        end_time: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> TimeEntry:
        entry = TimeEntry(
            id=new_id(),
            project_id=project_id,
            start_time=start_time,
            end_time=end_time,
            duration=max(0, int(duration)),
            description=description,
        )
        with database_connection(self.db_path) as conn:
            if fetch_project(conn, project_id) is None:
                raise ProjectNotFoundError(project_id)
            upsert_time_entries(conn, [entry])
        return entry

    def update(self, entry_id: str, **changes: Any) -> TimeEntry:
        with database_connection(self.db_path) as conn:
            project_id = changes.get("project_id")
            if project_id is not None and fetch_project(conn, project_id) is None:
                raise ProjectNotFoundError(project_id)
            update_time_entry(conn, entry_id, **changes)
            entry = fetch_time_entry(conn, entry_id)
        if entry is None:
            raise TimeEntryNotFoundError(entry_id)
        return entry

    def delete(self, entry_id: str) -> None:
        with database_connection(self.db_path) as conn:
            delete_time_entry(conn, entry_id)

    def upsert_many(self, entries: Iterable[TimeEntry]) -> None:
        with database_connection(self.db_path) as conn:
            upsert_time_entries(conn, entries)


class ActiveTimerStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def get(self) -> Optional[ActiveTimer]:
        with database_connection(self.db_path) as conn:
            return fetch_active_timer(conn)

    def put(self, timer: ActiveTimer) -> None:
        with database_connection(self.db_path) as conn:
            if fetch_project(conn, timer.project_id) is None:
                raise ProjectNotFoundError(timer.project_id)
            put_active_timer(conn, timer)

    def delete(self) -> bool:
        with database_connection(self.db_path) as conn:
            return delete_active_timer(conn)


@dataclass(slots=True)
class Stores:
    """The three stores backed by one database file."""

    projects: ProjectStore
    time_entries: TimeEntryStore
    active_timer: ActiveTimerStore

    @classmethod
    def open(cls, db_path: Path) -> "Stores":
        return cls(
            projects=ProjectStore(db_path),
            time_entries=TimeEntryStore(db_path),
            active_timer=ActiveTimerStore(db_path),
        )
