"""Snapshot synchronization between the local database and durable sinks.

A snapshot captures every project, time entry and the active timer at one
instant, stamped with a checksum over ``{version, projects, timeEntries,
activeTimer}``. Saving tries the primary sink first and silently degrades to
the fallback sink; loading verifies the checksum before merging anything
into the local database, record by record, keeping whichever side has the
newer timestamp.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import struct
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar

from .config import SyncSettings
from .errors import SinkError
from .models import ActiveTimer, Project, TimeEntry, to_wire_time, utc_now
from .sinks import FileSink, RemoteSink, SyncSink
from .store import Stores

logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = "2.0"
SNAPSHOT_KEY = "trackly_sync_store"

T = TypeVar("T", Project, TimeEntry)


def canonical_json(payload: Any) -> str:
    """Serialize ``payload`` the way ``JSON.stringify`` does, preserving key order."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def compute_checksum(payload: Any) -> str:
    """Return a 32-bit rolling hash of ``payload`` as lowercase hex.

    The hash runs over UTF-16 code units of the canonical JSON text
    (``hash = hash * 31 + unit`` wrapped to a signed 32-bit integer), so a
    browser client computes the same value for the same document.
    """
    encoded = canonical_json(payload).encode("utf-16-le")
    value = 0
    for (unit,) in struct.iter_unpack("<H", encoded):
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return format(abs(value), "x")


def checksum_fields(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "version": snapshot.get("version"),
        "projects": snapshot.get("projects"),
        "timeEntries": snapshot.get("timeEntries"),
        "activeTimer": snapshot.get("activeTimer"),
    }


def verify_checksum(snapshot: Mapping[str, Any]) -> bool:
    return compute_checksum(checksum_fields(snapshot)) == snapshot.get("checksum")


def _newer_records(
    local: Iterable[T],
    incoming: Iterable[T],
    timestamp: Callable[[T], datetime],
) -> list[T]:
    existing = {record.id: record for record in local}
    winners: dict[str, T] = {}
    for record in incoming:
        current = winners.get(record.id) or existing.get(record.id)
        if current is None or timestamp(record) > timestamp(current):
            winners[record.id] = record
    return list(winners.values())


def merge_projects(local: Iterable[Project], incoming: Iterable[Project]) -> list[Project]:
    """Incoming projects that are unknown locally or have a strictly newer ``created_at``."""
    return _newer_records(local, incoming, lambda project: project.created_at)


def merge_time_entries(
    local: Iterable[TimeEntry], incoming: Iterable[TimeEntry]
) -> list[TimeEntry]:
    return _newer_records(local, incoming, lambda entry: entry.start_time)


def should_replace_timer(
    local: Optional[ActiveTimer], incoming: Optional[ActiveTimer]
) -> bool:
    if incoming is None:
        return False
    return local is None or incoming.start_time > local.start_time


class SnapshotFormatError(ValueError):
    pass


def parse_snapshot(
    snapshot: Mapping[str, Any],
) -> tuple[list[Project], list[TimeEntry], Optional[ActiveTimer]]:
    projects = snapshot.get("projects")
    entries = snapshot.get("timeEntries")
    if not isinstance(projects, list) or not isinstance(entries, list):
        raise SnapshotFormatError("projects and timeEntries must be lists")
    try:
        parsed_projects = [Project.from_wire(item) for item in projects]
        parsed_entries = [TimeEntry.from_wire(item) for item in entries]
        raw_timer = snapshot.get("activeTimer")
        timer = ActiveTimer.from_wire(raw_timer) if raw_timer else None
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise SnapshotFormatError(str(exc)) from exc
    return parsed_projects, parsed_entries, timer


@dataclass(slots=True)
class SaveResult:
    success: bool
    target: Optional[str] = None
    message: str = ""
    skipped: bool = False
    checksum: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


@dataclass(slots=True)
class LoadResult:
    success: bool
    message: str
    source: Optional[str] = None
    skipped: bool = False
    projects: int = 0
    time_entries: int = 0
    projects_merged: int = 0
    time_entries_merged: int = 0
    active_timer_restored: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass(slots=True)
class MergeCounts:
    projects: int = 0
    time_entries: int = 0
    skipped_entries: int = 0
    active_timer_restored: bool = False


@dataclass(slots=True)
class SyncStatus:
    last_sync: Optional[datetime] = None
    is_syncing: bool = False
    error: Optional[str] = None
    last_target: Optional[str] = None


class SyncEngine:
    """Save, load and merge snapshots of the local database."""

    def __init__(
        self,
        stores: Stores,
        primary: SyncSink,
        fallback: SyncSink,
        *,
        key: str = SNAPSHOT_KEY,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.stores = stores
        self.primary = primary
        self.fallback = fallback
        self.key = key
        self._clock = clock
        self._busy = threading.Lock()
        self._status = SyncStatus()

    def current_state(self) -> dict[str, Any]:
        """The checksummed part of a snapshot, built from the local database."""
        timer = self.stores.active_timer.get()
        return {
            "version": SNAPSHOT_VERSION,
            "projects": [project.to_wire() for project in self.stores.projects.list_all()],
            "timeEntries": [entry.to_wire() for entry in self.stores.time_entries.list_all()],
            "activeTimer": timer.to_wire() if timer else None,
        }

    def state_checksum(self) -> str:
        return compute_checksum(self.current_state())

    def build_snapshot(self) -> dict[str, Any]:
        state = self.current_state()
        now = self._clock()
        return {
            "version": state["version"],
            "timestamp": int(now.timestamp() * 1000),
            "lastSync": to_wire_time(now),
            "projects": state["projects"],
            "timeEntries": state["timeEntries"],
            "activeTimer": state["activeTimer"],
            "checksum": compute_checksum(state),
        }

    def status(self) -> SyncStatus:
        return SyncStatus(
            last_sync=self._status.last_sync,
            is_syncing=self._busy.locked(),
            error=self._status.error,
            last_target=self._status.last_target,
        )

    def save_snapshot(self) -> SaveResult:
        if not self._busy.acquire(blocking=False):
            logger.debug("Sync already in progress; skipping save.")
            return SaveResult(False, skipped=True, message="Sync already in progress")
        try:
            result = self._save_locked()
        finally:
            self._busy.release()
        self._record(result.success, result.message, result.target, result.skipped)
        return result

    def _save_locked(self) -> SaveResult:
        try:
            snapshot = self.build_snapshot()
        except sqlite3.Error as exc:
            logger.exception("Failed to read local state for sync.")
            return SaveResult(False, message=f"Failed to read local state: {exc}")

        counts = f"{len(snapshot['projects'])} projects, {len(snapshot['timeEntries'])} entries"
        if self.primary.write(self.key, snapshot):
            logger.info("Snapshot saved to %s (%s)", self.primary.name, counts)
            return SaveResult(
                True, "primary", f"Saved {counts}", checksum=snapshot["checksum"]
            )

        logger.warning(
            "Primary sink %s unavailable; writing snapshot to %s.",
            self.primary.name,
            self.fallback.name,
        )
        if self.fallback.write(self.key, snapshot):
            return SaveResult(
                True,
                "fallback",
                f"Saved {counts} to fallback storage",
                checksum=snapshot["checksum"],
            )

        logger.error("Snapshot could not be written to any sink.")
        return SaveResult(False, message="All sync sinks failed")

    def load_snapshot(self) -> LoadResult:
        if not self._busy.acquire(blocking=False):
            logger.debug("Sync already in progress; skipping load.")
            return LoadResult(False, "Sync already in progress", skipped=True)
        try:
            result = self._load_locked()
        finally:
            self._busy.release()
        self._record(result.success, result.message, result.source, result.skipped)
        return result

    def _load_locked(self) -> LoadResult:
        snapshot, source = self._read_latest()
        if snapshot is None:
            return LoadResult(False, "No sync data found")

        version = snapshot.get("version")
        if version != SNAPSHOT_VERSION:
            logger.warning(
                "Snapshot version %s differs from %s", version, SNAPSHOT_VERSION
            )

        if not verify_checksum(snapshot):
            logger.warning("Snapshot from %s failed checksum verification.", source)
            return LoadResult(False, "Corrupted data detected", source=source)

        try:
            projects, entries, timer = parse_snapshot(snapshot)
        except SnapshotFormatError as exc:
            logger.warning("Snapshot from %s is malformed: %s", source, exc)
            return LoadResult(False, f"Invalid snapshot format: {exc}", source=source)

        try:
            counts = self.merge(projects, entries, timer)
        except sqlite3.Error as exc:
            logger.exception("Failed to merge snapshot into the local database.")
            return LoadResult(False, f"Load failed: {exc}", source=source)

        logger.info(
            "Snapshot from %s merged: %d/%d projects, %d/%d entries updated",
            source,
            counts.projects,
            len(projects),
            counts.time_entries,
            len(entries),
        )
        return LoadResult(
            True,
            f"Synchronized: {len(projects)} projects, {len(entries)} entries",
            source=source,
            projects=len(projects),
            time_entries=len(entries),
            projects_merged=counts.projects,
            time_entries_merged=counts.time_entries,
            active_timer_restored=counts.active_timer_restored,
        )

    def _read_latest(self) -> tuple[Optional[dict[str, Any]], Optional[str]]:
        for label, sink in (("primary", self.primary), ("fallback", self.fallback)):
            try:
                snapshot = sink.read(self.key)
            except SinkError as exc:
                logger.warning("Could not read snapshot from %s: %s", sink.name, exc)
                continue
            if snapshot is not None:
                return snapshot, label
        return None, None

    def merge(
        self,
        projects: list[Project],
        entries: list[TimeEntry],
        timer: Optional[ActiveTimer],
    ) -> MergeCounts:
        """Apply incoming records that are newer than their local counterparts."""
        counts = MergeCounts()

        local_projects = self.stores.projects.list_all()
        project_updates = merge_projects(local_projects, projects)
        self.stores.projects.upsert_many(project_updates)
        counts.projects = len(project_updates)

        known_projects = {project.id for project in local_projects}
        known_projects.update(project.id for project in projects)
        entry_updates = []
        for entry in merge_time_entries(self.stores.time_entries.list_all(), entries):
            if entry.project_id in known_projects:
                entry_updates.append(entry)
            else:
                counts.skipped_entries += 1
        if counts.skipped_entries:
            logger.warning(
                "Skipped %d time entries that reference unknown projects.",
                counts.skipped_entries,
            )
        self.stores.time_entries.upsert_many(entry_updates)
        counts.time_entries = len(entry_updates)

        if timer is not None and timer.project_id in known_projects:
            if should_replace_timer(self.stores.active_timer.get(), timer):
                self.stores.active_timer.put(timer)
                counts.active_timer_restored = True
        return counts

    def export_to_file(self, path: Path) -> bool:
        """Write a full snapshot to ``path`` as indented JSON."""
        try:
            snapshot = self.build_snapshot()
            path = Path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8"
            )
        except (OSError, sqlite3.Error):
            logger.exception("Export to %s failed.", path)
            return False
        logger.info("Exported snapshot to %s", path)
        return True

    def import_from_file(self, path: Path) -> LoadResult:
        """Import a snapshot file, overwriting local records it contains.

        Unlike :meth:`load_snapshot`, a checksum mismatch only logs a warning:
        exported files are often edited by hand.
        """
        try:
            snapshot = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read import file %s: %s", path, exc)
            return LoadResult(False, f"Import failed: {exc}")
        return self.import_snapshot(snapshot)

    def import_snapshot(self, snapshot: Any) -> LoadResult:
        if not isinstance(snapshot, dict) or "projects" not in snapshot or "timeEntries" not in snapshot:
            return LoadResult(False, "Invalid file format")
        if not verify_checksum(snapshot):
            logger.warning("Imported snapshot has an invalid checksum; importing anyway.")
        try:
            projects, entries, timer = parse_snapshot(snapshot)
        except SnapshotFormatError as exc:
            return LoadResult(False, f"Invalid file format: {exc}")

        try:
            self.stores.projects.upsert_many(projects)
            known_projects = {project.id for project in self.stores.projects.list_all()}
            importable = [entry for entry in entries if entry.project_id in known_projects]
            if len(importable) != len(entries):
                logger.warning(
                    "Skipped %d imported entries that reference unknown projects.",
                    len(entries) - len(importable),
                )
            self.stores.time_entries.upsert_many(importable)
            restored = False
            if timer is not None and timer.project_id in known_projects:
                self.stores.active_timer.put(timer)
                restored = True
        except sqlite3.Error as exc:
            logger.exception("Import failed while writing to the local database.")
            return LoadResult(False, f"Import failed: {exc}")

        saved = self.save_snapshot()
        logger.info("Imported %d projects and %d entries", len(projects), len(importable))
        message = f"Imported: {len(projects)} projects, {len(importable)} entries"
        if not saved.success:
            logger.warning("Snapshot save after import did not complete: %s", saved.message)
            message = f"{message} (snapshot not saved: {saved.message})"
        return LoadResult(
            True,
            message,
            source="import",
            projects=len(projects),
            time_entries=len(importable),
            projects_merged=len(projects),
            time_entries_merged=len(importable),
            active_timer_restored=restored,
        )

    def _record(
        self, success: bool, message: str, target: Optional[str], skipped: bool
    ) -> None:
        if success:
            self._status.last_sync = self._clock()
            self._status.error = None
            self._status.last_target = target
        elif not skipped:
            self._status.error = message


def engine_from_settings(
    stores: Stores,
    settings: SyncSettings,
    *,
    clock: Callable[[], datetime] = utc_now,
) -> SyncEngine:
    """Use the remote server when configured, else the sync directory, as primary sink."""
    primary: SyncSink
    if settings.remote_url:
        primary = RemoteSink(settings.remote_url, timeout=settings.request_timeout)
    else:
        primary = FileSink(settings.sync_dir)
    fallback = FileSink(settings.fallback_dir, name="fallback")
    return SyncEngine(stores, primary, fallback, clock=clock)
