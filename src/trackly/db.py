"""SQLite database layer for projects, time entries and the active timer."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .errors import ProjectNotFoundError, TimeEntryNotFoundError
from .models import (
    ACTIVE_TIMER_ID,
    ActiveTimer,
    Project,
    TimeEntry,
    from_wire_time,
    to_wire_time,
)


_UNSET = object()


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL,
            created_at TEXT NOT NULL,
            planned_hours_per_day REAL
        );

        CREATE TABLE IF NOT EXISTS time_entries (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration INTEGER NOT NULL DEFAULT 0,
            description TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_time_entries_project
            ON time_entries(project_id);
        CREATE INDEX IF NOT EXISTS idx_time_entries_start_time
            ON time_entries(start_time);

        CREATE TABLE IF NOT EXISTS active_timer (
            id TEXT PRIMARY KEY DEFAULT 'active',
            project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
            start_time TEXT NOT NULL,
            is_running INTEGER NOT NULL DEFAULT 1,
            is_paused INTEGER NOT NULL DEFAULT 0,
            paused_at TEXT,
            total_paused_duration INTEGER NOT NULL DEFAULT 0
        );
        """
    )


def _time_or_none(value: Optional[datetime]) -> Optional[str]:
    return to_wire_time(value) if value is not None else None


def row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        created_at=from_wire_time(row["created_at"]),
        planned_hours_per_day=row["planned_hours_per_day"],
    )


def row_to_time_entry(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        project_id=row["project_id"],
        start_time=from_wire_time(row["start_time"]),
        end_time=from_wire_time(row["end_time"]) if row["end_time"] else None,
        duration=int(row["duration"]),
        description=row["description"],
    )


def row_to_active_timer(row: sqlite3.Row) -> ActiveTimer:
    return ActiveTimer(
        project_id=row["project_id"],
        start_time=from_wire_time(row["start_time"]),
        is_running=bool(row["is_running"]),
        is_paused=bool(row["is_paused"]),
        paused_at=from_wire_time(row["paused_at"]) if row["paused_at"] else None,
        total_paused_duration=int(row["total_paused_duration"] or 0),
    )


# Projects


def fetch_projects(conn: sqlite3.Connection) -> list[Project]:
    """Return all projects, newest first."""
    rows = conn.execute(
        """
        SELECT id, name, color, created_at, planned_hours_per_day
        FROM projects
        ORDER BY created_at DESC, id
        """
    )
    return [row_to_project(row) for row in rows]


def fetch_project(conn: sqlite3.Connection, project_id: str) -> Optional[Project]:
    row = conn.execute(
        """
        SELECT id, name, color, created_at, planned_hours_per_day
        FROM projects
        WHERE id = ?
        """,
        (project_id,),
    ).fetchone()
    return row_to_project(row) if row else None


def upsert_projects(conn: sqlite3.Connection, projects: Iterable[Project]) -> None:
    with transaction(conn):
        conn.executemany(
            """
            INSERT INTO projects (id, name, color, created_at, planned_hours_per_day)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                color = excluded.color,
                created_at = excluded.created_at,
                planned_hours_per_day = excluded.planned_hours_per_day
            """,
            [
                (
                    project.id,
                    project.name,
                    project.color,
                    to_wire_time(project.created_at),
                    project.planned_hours_per_day,
                )
                for project in projects
            ],
        )


def update_project(
    conn: sqlite3.Connection,
    project_id: str,
    *,
    name: Optional[str] = None,
    color: Optional[str] = None,
    planned_hours_per_day: object = _UNSET,
) -> None:
    """Update the editable fields of a project."""
    fields: list[str] = []
    params: list[object] = []

    if name is not None:
        fields.append("name = ?")
        params.append(name)
    if color is not None:
        fields.append("color = ?")
        params.append(color)
    if planned_hours_per_day is not _UNSET:
        fields.append("planned_hours_per_day = ?")
        params.append(planned_hours_per_day)

    if not fields:
        if fetch_project(conn, project_id) is None:
            raise ProjectNotFoundError(project_id)
        return

    params.append(project_id)
    cur = conn.execute(
        f"UPDATE projects SET {', '.join(fields)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise ProjectNotFoundError(project_id)


def delete_project(conn: sqlite3.Connection, project_id: str) -> int:
    """Delete a project with its time entries; returns the number of entries removed."""
    with transaction(conn):
        removed = conn.execute(
            "DELETE FROM time_entries WHERE project_id = ?", (project_id,)
        ).rowcount
        conn.execute("DELETE FROM active_timer WHERE project_id = ?", (project_id,))
        cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if cur.rowcount == 0:
            raise ProjectNotFoundError(project_id)
    return removed


# Time entries


def fetch_time_entries(
    conn: sqlite3.Connection,
    *,
    project_id: Optional[str] = None,
    since: Optional[datetime] = None,
) -> list[TimeEntry]:
    """Fetch time entries, newest first, optionally filtered."""
    clauses: list[str] = []
    params: list[object] = []
    if project_id is not None:
        clauses.append("project_id = ?")
        params.append(project_id)
    if since is not None:
        clauses.append("start_time >= ?")
        params.append(to_wire_time(since))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = conn.execute(
        f"""
        SELECT id, project_id, start_time, end_time, duration, description
        FROM time_entries
        {where}
        ORDER BY start_time DESC, id
        """,
        params,
    )
    return [row_to_time_entry(row) for row in rows]


def fetch_time_entry(conn: sqlite3.Connection, entry_id: str) -> Optional[TimeEntry]:
    row = conn.execute(
        """
        SELECT id, project_id, start_time, end_time, duration, description
        FROM time_entries
        WHERE id = ?
        """,
        (entry_id,),
    ).fetchone()
    return row_to_time_entry(row) if row else None


def upsert_time_entries(conn: sqlite3.Connection, entries: Iterable[TimeEntry]) -> None:
    with transaction(conn):
        conn.executemany(
            """
            INSERT INTO time_entries (
                id,
                project_id,
                start_time,
                end_time,
                duration,
                description
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_id = excluded.project_id,
                start_time = excluded.start_time,
                end_time = excluded.end_time,
                duration = excluded.duration,
                description = excluded.description
            """,
            [
                (
                    entry.id,
                    entry.project_id,
                    to_wire_time(entry.start_time),
                    _time_or_none(entry.end_time),
                    max(0, int(entry.duration)),
                    entry.description,
                )
                for entry in entries
            ],
        )


def update_time_entry(
    conn: sqlite3.Connection,
    entry_id: str,
    *,
    project_id: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: object = _UNSET,
    duration: Optional[int] = None,
    description: object = _UNSET,
) -> None:
    """Update a single time entry."""
    fields: list[str] = []
    params: list[object] = []

    if project_id is not None:
        fields.append("project_id = ?")
        params.append(project_id)
    if start_time is not None:
        fields.append("start_time = ?")
        params.append(to_wire_time(start_time))
    if end_time is not _UNSET:
        fields.append("end_time = ?")
        params.append(_time_or_none(end_time))  # type: ignore[arg-type]
    if duration is not None:
        fields.append("duration = ?")
        params.append(max(0, int(duration)))
    if description is not _UNSET:
        fields.append("description = ?")
        params.append(description)

    if not fields:
        if fetch_time_entry(conn, entry_id) is None:
            raise TimeEntryNotFoundError(entry_id)
        return

    params.append(entry_id)
    cur = conn.execute(
        f"UPDATE time_entries SET {', '.join(fields)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise TimeEntryNotFoundError(entry_id)


def delete_time_entry(conn: sqlite3.Connection, entry_id: str) -> None:
    cur = conn.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
    if cur.rowcount == 0:
        raise TimeEntryNotFoundError(entry_id)


# Active timer


def fetch_active_timer(conn: sqlite3.Connection) -> Optional[ActiveTimer]:
    row = conn.execute(
        """
        SELECT
            project_id,
            start_time,
            is_running,
            is_paused,
            paused_at,
            total_paused_duration
        FROM active_timer
        WHERE id = ?
        """,
        (ACTIVE_TIMER_ID,),
    ).fetchone()
    return row_to_active_timer(row) if row else None


def put_active_timer(conn: sqlite3.Connection, timer: ActiveTimer) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO active_timer (
            id,
            project_id,
            start_time,
            is_running,
            is_paused,
            paused_at,
            total_paused_duration
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            ACTIVE_TIMER_ID,
            timer.project_id,
            to_wire_time(timer.start_time),
            1 if timer.is_running else 0,
            1 if timer.is_paused else 0,
            _time_or_none(timer.paused_at),
            max(0, int(timer.total_paused_duration)),
        ),
    )


def delete_active_timer(conn: sqlite3.Connection) -> bool:
    cur = conn.execute("DELETE FROM active_timer WHERE id = ?", (ACTIVE_TIMER_ID,))
    return cur.rowcount > 0
