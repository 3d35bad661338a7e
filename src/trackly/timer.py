"""Start/pause/resume/stop operations for the singleton active timer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .errors import InvalidTimerStateError, NoActiveTimerError, ProjectNotFoundError
from .models import ActiveTimer, TimeEntry, utc_now
from .store import Stores
from .timing import finalize_duration, resume_pause_accumulation

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StartResult:
    timer: ActiveTimer
    finalized_entry: Optional[TimeEntry] = None


class TimerService:
    """Drive the active timer through Absent -> Running <-> Paused -> Absent."""

    def __init__(
        self,
        stores: Stores,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._stores = stores
        self._clock = clock

    def current(self) -> Optional[ActiveTimer]:
        return self._stores.active_timer.get()

    def start(self, project_id: str) -> StartResult:
        """Start timing ``project_id``.

        A timer that is already active is stopped first and recorded as a
        time entry, so switching projects never loses time.
        """
        if self._stores.projects.get(project_id) is None:
            raise ProjectNotFoundError(project_id)

        finalized: Optional[TimeEntry] = None
        if self._stores.active_timer.get() is not None:
            finalized = self.stop()

        timer = ActiveTimer(project_id=project_id, start_time=self._clock())
        self._stores.active_timer.put(timer)
        logger.info("Timer started for project %s", project_id)
        return StartResult(timer=timer, finalized_entry=finalized)

    def pause(self) -> ActiveTimer:
        timer = self._require_timer()
        if timer.is_paused:
            raise InvalidTimerStateError("Timer is already paused")
        paused = timer.copy(is_paused=True, paused_at=self._clock())
        self._stores.active_timer.put(paused)
        logger.debug("Timer paused at %s", paused.paused_at)
        return paused

    def resume(self) -> ActiveTimer:
        timer = self._require_timer()
        if not timer.is_paused:
            raise InvalidTimerStateError("Timer is not paused")
        resumed = timer.copy(
            is_paused=False,
            paused_at=None,
            total_paused_duration=resume_pause_accumulation(timer, self._clock()),
        )
        self._stores.active_timer.put(resumed)
        logger.debug(
            "Timer resumed; total paused %ss", resumed.total_paused_duration
        )
        return resumed

    def stop(self) -> TimeEntry:
        """Stop the active timer and record it as a time entry.

        When stopped while paused, the open pause is closed at the stop
        instant, so time spent paused is never counted as work.
        """
        timer = self._require_timer()
        end_time = self._clock()
        if timer.is_paused:
            timer = timer.copy(
                total_paused_duration=resume_pause_accumulation(timer, end_time),
                is_paused=False,
                paused_at=None,
            )
        entry = self._stores.time_entries.create(
            timer.project_id,
            timer.start_time,
            finalize_duration(timer, end_time),
            end_time=end_time,
        )
        self._stores.active_timer.delete()
        logger.info(
            "Timer stopped for project %s after %ss", entry.project_id, entry.duration
        )
        return entry

    def switch_project(self, project_id: str) -> ActiveTimer:
        """Re-assign the running timer to another project without stopping it."""
        timer = self._require_timer()
        if self._stores.projects.get(project_id) is None:
            raise ProjectNotFoundError(project_id)
        updated = timer.copy(project_id=project_id)
        self._stores.active_timer.put(updated)
        return updated

    def _require_timer(self) -> ActiveTimer:
        timer = self._stores.active_timer.get()
        if timer is None:
            raise NoActiveTimerError()
        return timer
