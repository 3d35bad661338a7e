"""Exception types raised by the Trackly core."""

from __future__ import annotations


class TracklyError(Exception):
    """Base class for all Trackly errors."""


class NotFoundError(TracklyError):
    """A requested record does not exist."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class TimeEntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Time entry not found: {entry_id}")
        self.entry_id = entry_id


class NoActiveTimerError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("No active timer")


class InvalidTimerStateError(TracklyError):
    """The timer is not in a state that allows the requested transition."""


class SinkError(TracklyError):
    """A sync sink could not be read or written."""
