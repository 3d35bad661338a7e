from __future__ import annotations

import threading
from datetime import timedelta
from unittest import mock

import pytest

from trackly.config import SyncSettings
from trackly.scheduler import SyncScheduler
from trackly.sync import SaveResult, SyncEngine


def make_settings(tmp_path, sync_seconds=3600.0, change_seconds=3600.0) -> SyncSettings:
    return SyncSettings(
        sync_interval=timedelta(seconds=sync_seconds),
        change_interval=timedelta(seconds=change_seconds),
        sync_dir=tmp_path / "sync",
        fallback_dir=tmp_path / "fallback",
        auto_sync=False,
        load_on_startup=False,
    )


@pytest.fixture
def scheduler(engine, tmp_path):
    scheduler = SyncScheduler(engine, make_settings(tmp_path))
    yield scheduler
    scheduler.stop()


class TestLifecycle:
    def test_start_twice_is_a_no_op(self, scheduler):
        assert scheduler.start() is True
        assert scheduler.start() is False
        assert scheduler.is_running()

    def test_stop_is_idempotent(self, scheduler):
        scheduler.stop()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()
        assert not scheduler.is_running()

    def test_can_restart_after_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()
        assert scheduler.start() is True


class TestChangeDetection:
    def test_first_check_only_sets_baseline(self, scheduler, primary_sink):
        assert scheduler.check_for_changes() is None
        assert primary_sink.read("trackly_sync_store") is None

    def test_saves_only_after_a_change(self, scheduler, stores, clock):
        scheduler.check_for_changes()
        assert scheduler.check_for_changes() is None

        stores.projects.create("Added", created_at=clock())
        result = scheduler.check_for_changes()

        assert result is not None and result.success
        assert scheduler.check_for_changes() is None

    def test_skipped_save_is_retried_on_the_next_check(self, scheduler, engine, stores, clock):
        scheduler.check_for_changes()
        stores.projects.create("Added", created_at=clock())

        engine._busy.acquire()
        try:
            skipped = scheduler.check_for_changes()
        finally:
            engine._busy.release()

        assert skipped.skipped
        retried = scheduler.check_for_changes()
        assert retried is not None and retried.success


class TestHooks:
    def test_hidden_saves_and_visible_loads(self, scheduler, project):
        saved = scheduler.on_visibility_change(hidden=True)
        assert isinstance(saved, SaveResult) and saved.success

        loaded = scheduler.on_visibility_change(hidden=False)
        assert loaded.success

    def test_flush_saves(self, scheduler):
        assert scheduler.flush().target == "primary"


class TestPeriodicLoops:
    def test_full_sync_runs_on_schedule_and_survives_errors(self, tmp_path):
        engine = mock.Mock(spec=SyncEngine)
        ran = threading.Event()
        calls = []

        def save():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            ran.set()
            return SaveResult(True, "primary")

        engine.save_snapshot.side_effect = save
        scheduler = SyncScheduler(engine, make_settings(tmp_path, sync_seconds=0.01))
        scheduler.start()
        try:
            assert ran.wait(timeout=5)
        finally:
            scheduler.stop()
        assert len(calls) >= 2

    def test_change_detection_runs_on_schedule(self, tmp_path):
        engine = mock.Mock(spec=SyncEngine)
        saved = threading.Event()
        checksums = iter(["a", "b"])
        engine.state_checksum.side_effect = lambda: next(checksums, "b")
        engine.save_snapshot.side_effect = lambda: saved.set() or SaveResult(True, "primary")

        scheduler = SyncScheduler(engine, make_settings(tmp_path, change_seconds=0.01))
        scheduler.start()
        try:
            assert saved.wait(timeout=5)
        finally:
            scheduler.stop()
