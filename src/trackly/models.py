"""Domain models for projects, time entries and the active timer."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


ACTIVE_TIMER_ID = "active"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_wire_time(value: datetime) -> str:
    """Format a timestamp the way a JavaScript ``Date`` serializes to JSON."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_wire_time(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond digits, which the wire format cannot carry."""
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def _optional_time(value: Any) -> Optional[datetime]:
    return from_wire_time(value) if value else None


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str) or not value:
        raise ValueError(f"{key} must be a non-empty string, got {value!r}")
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}")
    return value


def _optional_number(data: Mapping[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise ValueError(f"{key} must be a number, got {value!r}")
    return value


@dataclass(slots=True)
class Project:
    """A named bucket that time is tracked against."""

    id: str
    name: str
    color: str
    created_at: datetime
    planned_hours_per_day: Optional[float] = None

    def __post_init__(self) -> None:
        self.created_at = truncate_to_millis(self.created_at)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "createdAt": to_wire_time(self.created_at),
        }
        if self.planned_hours_per_day is not None:
            payload["plannedHoursPerDay"] = self.planned_hours_per_day
        return payload

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "Project":
        return cls(
            id=_required_str(data, "id"),
            name=_required_str(data, "name"),
            color=_required_str(data, "color"),
            created_at=from_wire_time(data["createdAt"]),
            planned_hours_per_day=_optional_number(data, "plannedHoursPerDay"),
        )


@dataclass(slots=True)
class TimeEntry:
    """A finalized block of time recorded against a project."""

    id: str
    project_id: str
    start_time: datetime
    duration: int
    end_time: Optional[datetime] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        self.start_time = truncate_to_millis(self.start_time)
        if self.end_time is not None:
            self.end_time = truncate_to_millis(self.end_time)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "startTime": to_wire_time(self.start_time),
        }
        if self.end_time is not None:
            payload["endTime"] = to_wire_time(self.end_time)
        payload["duration"] = self.duration
        if self.description is not None:
            payload["description"] = self.description
        return payload

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "TimeEntry":
        return cls(
            id=_required_str(data, "id"),
            project_id=_required_str(data, "projectId"),
            start_time=from_wire_time(data["startTime"]),
            end_time=_optional_time(data.get("endTime")),
            duration=int(data.get("duration") or 0),
            description=_optional_str(data, "description"),
        )


@dataclass(slots=True)
class ActiveTimer:
    """The single in-progress timing session."""

    project_id: str
    start_time: datetime
    is_running: bool = True
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    total_paused_duration: int = 0
    id: str = ACTIVE_TIMER_ID

    def __post_init__(self) -> None:
        self.start_time = truncate_to_millis(self.start_time)
        if self.paused_at is not None:
            self.paused_at = truncate_to_millis(self.paused_at)

    def copy(self, **changes: Any) -> "ActiveTimer":
        return replace(self, **changes)

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "projectId": self.project_id,
            "startTime": to_wire_time(self.start_time),
            "isRunning": self.is_running,
            "isPaused": self.is_paused,
        }
        if self.paused_at is not None:
            payload["pausedAt"] = to_wire_time(self.paused_at)
        payload["totalPausedDuration"] = self.total_paused_duration
        return payload

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "ActiveTimer":
        return cls(
            project_id=_required_str(data, "projectId"),
            start_time=from_wire_time(data["startTime"]),
            is_running=bool(data.get("isRunning", True)),
            is_paused=bool(data.get("isPaused") or False),
            paused_at=_optional_time(data.get("pausedAt")),
            total_paused_duration=int(data.get("totalPausedDuration") or 0),
        )
