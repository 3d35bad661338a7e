"""Elapsed-time accounting for the active timer and finished entries.

Everything in this module is pure: callers pass the instant they care about
and get plain integers back. Durations are whole seconds, floored.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable

from .models import ActiveTimer, TimeEntry


PERIODS = ("day", "week", "month")

_ONE_SECOND = timedelta(seconds=1)


def whole_seconds(start: datetime, end: datetime) -> int:
    """Floor of ``end - start`` in seconds; negative when ``end`` precedes ``start``."""
    return (end - start) // _ONE_SECOND


def active_elapsed_seconds(timer: ActiveTimer, now: datetime) -> int:
    """Worked seconds of ``timer`` as of ``now``, excluding completed pauses.

    Pausing is not taken into account here: while a timer is paused the
    value keeps advancing with ``now``. Use :func:`display_elapsed_seconds`
    for a value that stays frozen during a pause.
    """
    return whole_seconds(timer.start_time, now) - timer.total_paused_duration


def display_elapsed_seconds(timer: ActiveTimer, now: datetime) -> int:
    if timer.is_paused and timer.paused_at is not None:
        now = timer.paused_at
    return max(0, active_elapsed_seconds(timer, now))


def finalize_duration(timer: ActiveTimer, end_time: datetime) -> int:
    # Clock skew can put end_time before start_time.
    return max(0, whole_seconds(timer.start_time, end_time) - timer.total_paused_duration)


def resume_pause_accumulation(timer: ActiveTimer, now: datetime) -> int:
    """Return ``total_paused_duration`` including the pause that ends at ``now``.

    A timer that is not paused (or has no ``paused_at``) is returned
    unchanged.
    """
    if not timer.is_paused or timer.paused_at is None:
        return timer.total_paused_duration
    return timer.total_paused_duration + max(0, whole_seconds(timer.paused_at, now))


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def calculate_total_duration(entries: Iterable[TimeEntry]) -> int:
    return sum(entry.duration for entry in entries)


def period_start(period: str, now: datetime) -> datetime:
    """Start of the day, week (Monday) or month containing ``now``, as UTC.

    Boundaries fall on local midnight. The naive local wall time is converted
    back with ``astimezone()`` so the offset in effect on that date is used.
    """
    start = now.astimezone().replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        start -= timedelta(days=start.weekday())
    elif period == "month":
        start = start.replace(day=1)
    elif period != "day":
        raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
    return start.astimezone(timezone.utc)


def entries_in_period(
    entries: Iterable[TimeEntry], period: str, now: datetime
) -> list[TimeEntry]:
    start = period_start(period, now)
    return [entry for entry in entries if entry.start_time >= start]
