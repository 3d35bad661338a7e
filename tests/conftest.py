from __future__ import annotations

import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from trackly.models import ActiveTimer, Project, TimeEntry
from trackly.sinks import FileSink
from trackly.store import Stores
from trackly.sync import SNAPSHOT_VERSION, SyncEngine, compute_checksum


# Monday, so "week" and "day" periods start on the same date.
START = datetime(2025, 3, 10, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class BrokenSink:
    """A sink whose backing store is unreachable."""

    name = "broken"

    def __init__(self) -> None:
        self.writes = 0

    def write(self, key: str, payload: dict[str, Any]) -> bool:
        self.writes += 1
        return False

    def read(self, key: str) -> Optional[dict[str, Any]]:
        from trackly.errors import SinkError

        raise SinkError("unreachable")


@pytest.fixture(autouse=True)
def local_timezone():
    """Run every test with local time pinned to UTC; call the fixture to switch zones."""
    tzset = getattr(time, "tzset", None)
    original = os.environ.get("TZ")

    def use(name: str) -> None:
        if tzset is None:
            pytest.skip("time.tzset is not available on this platform")
        os.environ["TZ"] = name
        tzset()

    if tzset is not None:
        use("UTC")
    yield use
    if tzset is not None:
        if original is None:
            os.environ.pop("TZ", None)
        else:
            os.environ["TZ"] = original
        tzset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores(tmp_path) -> Stores:
    return Stores.open(tmp_path / "trackly.sqlite3")


@pytest.fixture
def project(stores, clock) -> Project:
    return stores.projects.create("Alpha", color="#4f46e5", created_at=clock())


@pytest.fixture
def primary_sink(tmp_path) -> FileSink:
    return FileSink(tmp_path / "sync")


@pytest.fixture
def fallback_sink(tmp_path) -> FileSink:
    return FileSink(tmp_path / "fallback", name="fallback")


@pytest.fixture
def engine(stores, primary_sink, fallback_sink, clock) -> SyncEngine:
    return SyncEngine(stores, primary_sink, fallback_sink, clock=clock)


@pytest.fixture
def make_snapshot():
    def _make(
        projects: list[Project] = (),
        entries: list[TimeEntry] = (),
        timer: Optional[ActiveTimer] = None,
        *,
        version: str = SNAPSHOT_VERSION,
    ) -> dict[str, Any]:
        state = {
            "version": version,
            "projects": [project.to_wire() for project in projects],
            "timeEntries": [entry.to_wire() for entry in entries],
            "activeTimer": timer.to_wire() if timer else None,
        }
        return {
            "version": version,
            "timestamp": int(START.timestamp() * 1000),
            "lastSync": "2025-03-10T09:00:00.000Z",
            "projects": state["projects"],
            "timeEntries": state["timeEntries"],
            "activeTimer": state["activeTimer"],
            "checksum": compute_checksum(state),
        }

    return _make
