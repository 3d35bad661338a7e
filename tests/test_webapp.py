from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from trackly.config import SyncSettings
from trackly.webapp import create_app


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        sync_dir=tmp_path / "sync",
        fallback_dir=tmp_path / "fallback",
        auto_sync=False,
        load_on_startup=False,
    )


@pytest.fixture
def client(tmp_path, settings, clock):
    app = create_app(db_path=tmp_path / "api.sqlite3", settings=settings, clock=clock)
    with TestClient(app) as client:
        yield client


def create_project(client, name="Alpha", **extra) -> dict:
    response = client.post("/api/projects", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/api/health").json() == {
        "status": "ok",
        "timestamp": "2025-03-10T09:00:00.000Z",
    }


class TestProjects:
    def test_crud(self, client):
        project = create_project(client, plannedHoursPerDay=8)
        assert project["name"] == "Alpha"
        assert project["plannedHoursPerDay"] == 8
        assert project["createdAt"] == "2025-03-10T09:00:00.000Z"
        assert project["color"].startswith("#")

        assert client.get(f"/api/projects/{project['id']}").json() == project
        assert client.get("/api/projects").json() == [project]

        updated = client.put(
            f"/api/projects/{project['id']}",
            json={"name": "Renamed", "plannedHoursPerDay": None},
        ).json()
        assert updated["name"] == "Renamed"
        assert "plannedHoursPerDay" not in updated

        assert client.delete(f"/api/projects/{project['id']}").status_code == 204
        assert client.get(f"/api/projects/{project['id']}").status_code == 404

    def test_validation(self, client):
        assert client.post("/api/projects", json={"name": ""}).status_code == 422
        assert client.post("/api/projects", json={"name": "   "}).status_code == 400
        assert client.post("/api/projects", json={"name": "x", "bogus": 1}).status_code == 422

    def test_missing_project(self, client):
        assert client.put("/api/projects/missing", json={"name": "x"}).status_code == 404
        assert client.delete("/api/projects/missing").status_code == 404

    def test_delete_cascades_to_entries(self, client):
        project = create_project(client)
        for start in ("2025-03-10T07:00:00Z", "2025-03-10T08:00:00Z"):
            client.post(
                "/api/time-entries",
                json={"projectId": project["id"], "startTime": start, "duration": 60},
            )
        assert len(client.get(f"/api/time-entries?projectId={project['id']}").json()) == 2

        client.delete(f"/api/projects/{project['id']}")

        assert client.get(f"/api/time-entries?projectId={project['id']}").json() == []
        assert client.get("/api/time-entries").json() == []


class TestTimeEntries:
    def test_crud(self, client):
        project = create_project(client)
        created = client.post(
            "/api/time-entries",
            json={
                "projectId": project["id"],
                "startTime": "2025-03-10T08:00:00Z",
                "endTime": "2025-03-10T08:30:00Z",
                "duration": 1800,
                "description": "Review",
            },
        )
        assert created.status_code == 201
        entry = created.json()
        assert entry["project"] == project
        assert entry["startTime"] == "2025-03-10T08:00:00.000Z"

        updated = client.put(
            f"/api/time-entries/{entry['id']}",
            json={"description": None, "endTime": None, "duration": 1200},
        ).json()
        assert "description" not in updated
        assert "endTime" not in updated
        assert updated["duration"] == 1200

        assert client.delete(f"/api/time-entries/{entry['id']}").status_code == 204
        assert client.get(f"/api/time-entries/{entry['id']}").status_code == 404

    def test_rejects_negative_duration_and_unknown_project(self, client):
        project = create_project(client)
        payload = {"projectId": project["id"], "startTime": "2025-03-10T08:00:00Z", "duration": -1}
        assert client.post("/api/time-entries", json=payload).status_code == 422
        payload.update(duration=5, projectId="missing")
        assert client.post("/api/time-entries", json=payload).status_code == 404

    def test_period_filter(self, client):
        project = create_project(client)
        for start in ("2025-03-10T08:00:00Z", "2025-03-09T08:00:00Z", "2025-02-20T08:00:00Z"):
            client.post(
                "/api/time-entries",
                json={"projectId": project["id"], "startTime": start, "duration": 10},
            )
        assert len(client.get("/api/time-entries?period=day").json()) == 1
        assert len(client.get("/api/time-entries?period=week").json()) == 1
        assert len(client.get("/api/time-entries?period=month").json()) == 2
        assert len(client.get("/api/time-entries").json()) == 3
        assert client.get("/api/time-entries?period=year").status_code == 400


class TestTimer:
    def test_pause_resume_stop_scenario(self, client, clock):
        project = create_project(client)
        assert client.get("/api/timer").json() is None

        started = client.post("/api/timer/start", json={"projectId": project["id"]})
        assert started.status_code == 201
        assert started.json()["finalizedEntry"] is None

        clock.advance(100)
        paused = client.post("/api/timer/pause").json()
        assert paused["isPaused"] is True
        assert paused["elapsedSeconds"] == 100

        clock.advance(30)
        assert client.get("/api/timer").json()["elapsedSeconds"] == 100
        resumed = client.post("/api/timer/resume").json()
        assert resumed["totalPausedDuration"] == 30
        assert "pausedAt" not in resumed

        clock.advance(70)
        entry = client.post("/api/timer/stop").json()
        assert entry["duration"] == 170
        assert entry["project"]["id"] == project["id"]
        assert client.get("/api/timer").json() is None

    def test_no_active_timer_is_404(self, client):
        for action in ("stop", "pause", "resume"):
            response = client.post(f"/api/timer/{action}")
            assert response.status_code == 404
            assert response.json() == {"detail": "No active timer"}

    def test_invalid_state_is_400(self, client):
        project = create_project(client)
        client.post("/api/timer/start", json={"projectId": project["id"]})
        assert client.post("/api/timer/resume").status_code == 400
        client.post("/api/timer/pause")
        assert client.post("/api/timer/pause").json() == {"detail": "Timer is already paused"}

    def test_start_while_running_records_entry(self, client, clock):
        first = create_project(client, "First")
        second = create_project(client, "Second")
        client.post("/api/timer/start", json={"projectId": first["id"]})
        clock.advance(90)

        body = client.post("/api/timer/start", json={"projectId": second["id"]}).json()

        assert body["projectId"] == second["id"]
        assert body["finalizedEntry"]["projectId"] == first["id"]
        assert body["finalizedEntry"]["duration"] == 90
        assert len(client.get(f"/api/time-entries?projectId={first['id']}").json()) == 1

    def test_switch_project(self, client):
        first = create_project(client, "First")
        second = create_project(client, "Second")
        client.post("/api/timer/start", json={"projectId": first["id"]})
        body = client.put("/api/timer/project", json={"projectId": second["id"]}).json()
        assert body["project"]["name"] == "Second"


class TestSync:
    def test_save_load_status(self, client):
        create_project(client)
        saved = client.post("/api/sync/save").json()
        assert saved["success"] is True
        assert saved["target"] == "primary"

        loaded = client.post("/api/sync/load").json()
        assert loaded["success"] is True
        assert loaded["projects"] == 1

        status = client.get("/api/sync/status").json()
        assert status["lastSync"] == "2025-03-10T09:00:00.000Z"
        assert status["error"] is None
        assert status["autoSync"] is False

    def test_visibility_hooks(self, client):
        create_project(client)
        assert client.post("/api/sync/visibility", json={"hidden": True}).json()["target"] == "primary"
        assert client.post("/api/sync/visibility", json={"hidden": False}).json()["success"] is True

    def test_export_and_import(self, client, tmp_path, settings, clock):
        create_project(client)
        exported = client.get("/api/sync/export")
        assert "attachment" in exported.headers["content-disposition"]
        snapshot = exported.json()

        other_app = create_app(db_path=tmp_path / "other.sqlite3", settings=settings, clock=clock)
        with TestClient(other_app) as other:
            result = other.post("/api/sync/import", json=snapshot).json()
            assert result["success"] is True
            assert [p["name"] for p in other.get("/api/projects").json()] == ["Alpha"]

    def test_remote_sink_endpoints(self, client):
        assert client.get("/api/sync-files/shared").status_code == 404
        assert client.post("/api/save-sync/shared", json={"version": "2.0"}).json() == {"success": True}
        assert client.get("/api/sync-files/shared").json() == {"version": "2.0"}
        assert client.post("/api/save-sync/.hidden", json={}).status_code == 400


def test_startup_loads_and_shutdown_flushes(tmp_path, clock):
    settings = SyncSettings(
        sync_dir=tmp_path / "sync",
        fallback_dir=tmp_path / "fallback",
        auto_sync=True,
        sync_interval=timedelta(hours=1),
        change_interval=timedelta(hours=1),
    )
    first = create_app(db_path=tmp_path / "first.sqlite3", settings=settings, clock=clock)
    with TestClient(first) as client:
        create_project(client)
        assert client.get("/api/sync/status").json()["autoSync"] is True

    second = create_app(db_path=tmp_path / "second.sqlite3", settings=settings, clock=clock)
    with TestClient(second) as client:
        assert [p["name"] for p in client.get("/api/projects").json()] == ["Alpha"]
