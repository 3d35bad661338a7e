"""Background scheduling of periodic and change-triggered snapshot saves."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from .config import SyncSettings
from .sync import LoadResult, SaveResult, SyncEngine

logger = logging.getLogger(__name__)


class _PeriodicTask:
    """Run ``action`` every ``interval`` on a daemon thread until stopped."""

    def __init__(self, name: str, interval: timedelta, action: Callable[[], object]) -> None:
        self.name = name
        self.interval = interval
        self._action = action
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name=f"trackly-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run(self, stop_event: threading.Event) -> None:
        seconds = self.interval.total_seconds()
        # wait() returns True once stop() is called.
        while not stop_event.wait(seconds):
            try:
                self._action()
            except Exception:
                logger.exception("Scheduled %s failed; retrying next cycle.", self.name)


class SyncScheduler:
    """Own the full-sync and change-detection schedules for one engine."""

    def __init__(self, engine: SyncEngine, settings: SyncSettings) -> None:
        self.engine = engine
        self.settings = settings
        self._lock = threading.Lock()
        self._full_sync: Optional[_PeriodicTask] = None
        self._change_detection: Optional[_PeriodicTask] = None
        self._last_checksum: Optional[str] = None

    def start(self) -> bool:
        """Start both schedules; returns ``False`` if they were already running."""
        with self._lock:
            if self._full_sync is not None:
                logger.warning("Auto-sync is already running.")
                return False
            self._last_checksum = None
            self._full_sync = _PeriodicTask(
                "full-sync", self.settings.sync_interval, self.run_full_sync
            )
            self._change_detection = _PeriodicTask(
                "change-detection", self.settings.change_interval, self.check_for_changes
            )
            self._full_sync.start()
            self._change_detection.start()
        logger.info(
            "Auto-sync enabled (every %s, change check every %s)",
            self.settings.sync_interval,
            self.settings.change_interval,
        )
        return True

    def stop(self) -> None:
        with self._lock:
            tasks = [task for task in (self._full_sync, self._change_detection) if task]
            self._full_sync = None
            self._change_detection = None
        if not tasks:
            return
        for task in tasks:
            task.stop()
        logger.info("Auto-sync disabled.")

    def is_running(self) -> bool:
        with self._lock:
            return self._full_sync is not None

    def run_full_sync(self) -> SaveResult:
        return self.engine.save_snapshot()

    def check_for_changes(self) -> Optional[SaveResult]:
        """Save a snapshot when the local state changed since the previous check.

        The first check only records a baseline.
        """
        current = self.engine.state_checksum()
        if self._last_checksum is None:
            self._last_checksum = current
            return None
        if current == self._last_checksum:
            return None
        logger.info("Local changes detected; synchronizing.")
        result = self.engine.save_snapshot()
        # Keep the old baseline after a skipped or failed save.
        if result.success:
            self._last_checksum = current
        return result

    def on_visibility_change(self, hidden: bool) -> SaveResult | LoadResult:
        """Save when the client goes to the background, load when it comes back."""
        if hidden:
            logger.debug("Client hidden; saving snapshot.")
            return self.engine.save_snapshot()
        logger.debug("Client visible; loading snapshot.")
        return self.engine.load_snapshot()

    def flush(self) -> SaveResult:
        """Best-effort save before the process goes away."""
        return self.engine.save_snapshot()
