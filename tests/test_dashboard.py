"""Tests for the operator API.

Endpoints tested:
    GET  /api/status
    GET  /api/backups
    POST /api/backups/clean
    GET  /api/config
    PUT  /api/config
    POST /api/enable
    POST /api/disable
    POST /api/confirmation/save-now
    POST /api/confirmation/skip
    POST /api/transition
    WS   /ws/live (broadcast path)
"""

import json
from datetime import datetime, timedelta

import pytest

from autosave.backup.naming import backup_name
from autosave.core.errors import ActionIOError
from autosave.dashboard.api import routes
from autosave.dashboard.app import create_app
from autosave.dashboard.websocket_handler import WebSocketHandler, handle_command
from autosave.service.bootstrap import build_service


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class FakeWebSocket:
    def __init__(self, broken=False):
        self.broken = broken
        self.messages = []

    def send(self, message):
        if self.broken:
            raise ConnectionError("closed")
        self.messages.append(json.loads(message))


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    (root / "Scenes").mkdir(parents=True)
    (root / "Scenes" / "Level1.scene").write_text("level one")
    return root


@pytest.fixture
def ws_handler():
    return WebSocketHandler()


@pytest.fixture
def services(tmp_path, project, ws_handler):
    service, host = build_service(
        config_path=str(tmp_path / "autosave.json"),
        project_root=str(project),
        ws_handler=ws_handler,
    )
    return {"service": service, "host": host, "project": project}


@pytest.fixture
def app(services, ws_handler):
    return create_app(service=services["service"], ws_handler=ws_handler)


@pytest.fixture
def client(app):
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c


def later(minutes):
    return datetime.now() + timedelta(minutes=minutes)


# ---------------------------------------------------------------------------
# GET /api/status
# ---------------------------------------------------------------------------

class TestGetStatus:
    def test_returns_summary(self, client):
        resp = client.get("/api/status")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["enabled"] is True
        assert data["info"].startswith("AutoSave enabled.")
        assert data["confirmation"] is None
        assert data["websocket_clients"] == 0
        assert set(data["state"]) == {"last_save_at", "last_backup_at", "last_prune_at"}

    def test_unavailable_without_service(self, client):
        routes.init_routes(service=None, ws_handler=None)
        assert client.get("/api/status").status_code == 503
        assert client.get("/api/backups").status_code == 503
        assert client.post("/api/transition").status_code == 503


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

class TestBackups:
    def test_empty(self, client):
        data = client.get("/api/backups").get_json()
        assert data["backups"] == []
        assert data["total"] == 0
        assert data["directory"].endswith("AutoSaves")

    def test_backup_listed_after_tick(self, client, services):
        services["service"].tick(False, now=later(25))
        data = client.get("/api/backups").get_json()
        assert data["total"] == 1
        assert data["backups"][0]["original_name"] == "Level1.scene"

    def test_limit(self, client, services):
        folder = services["project"] / "AutoSaves"
        folder.mkdir(exist_ok=True)
        for minutes in range(3):
            stamp = datetime(2024, 1, 2, 3, minutes, 0)
            (folder / backup_name("Level1.scene", stamp)).write_text("x")
        data = client.get("/api/backups?limit=2").get_json()
        assert data["total"] == 2
        assert data["backups"][0]["created_at"] == "2024-01-02T03:02:00"

    def test_clean_requires_confirm(self, client):
        resp = client.post("/api/backups/clean", json={})
        assert resp.status_code == 400

    def test_clean(self, client, services):
        folder = services["project"] / "AutoSaves"
        folder.mkdir(exist_ok=True)
        (folder / "old.scene").write_text("x")
        resp = client.post("/api/backups/clean", json={"confirm": True})
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Backup folder cleaned up successfully."
        assert folder.is_dir()
        assert list(folder.iterdir()) == []


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

class TestConfig:
    def test_get(self, client):
        data = client.get("/api/config").get_json()
        assert data["save_interval_minutes"] == 10
        assert data["backup_directory"] == "./AutoSaves"

    def test_update(self, client, tmp_path):
        resp = client.put("/api/config", json={"save_interval_minutes": 5})
        assert resp.status_code == 200
        assert resp.get_json()["save_interval_minutes"] == 5
        with open(tmp_path / "autosave.json") as f:
            assert json.load(f)["save.interval_minutes"] == 5

    def test_update_clamps(self, client):
        resp = client.put("/api/config", json={"retention_minutes": 500})
        assert resp.get_json()["retention_minutes"] == 90

    def test_update_rejected(self, client):
        resp = client.put("/api/config", json={"save_interval_minutes": -2})
        assert resp.status_code == 400
        data = resp.get_json()
        assert "negative" in data["error"]
        assert data["config"]["save_interval_minutes"] == 10

    def test_backup_folder_outside_project(self, client, tmp_path):
        resp = client.put("/api/config",
                          json={"backup_directory": str(tmp_path / "elsewhere")})
        assert resp.status_code == 400
        assert "inside the project" in resp.get_json()["error"]

    def test_unknown_key(self, client):
        assert client.put("/api/config", json={"speed": 3}).status_code == 400

    def test_empty_body(self, client):
        assert client.put("/api/config", json={}).status_code == 400


# ---------------------------------------------------------------------------
# Enable / disable
# ---------------------------------------------------------------------------

class TestEnableDisable:
    def test_disable_then_enable(self, client):
        data = client.post("/api/disable").get_json()
        assert data == {"enabled": False, "info": "AutoSave disabled.\n"}
        assert client.get("/api/status").get_json()["enabled"] is False

        data = client.post("/api/enable").get_json()
        assert data["enabled"] is True
        assert client.get("/api/status").get_json()["enabled"] is True


# ---------------------------------------------------------------------------
# Confirmation and transition
# ---------------------------------------------------------------------------

class TestConfirmation:
    @pytest.fixture
    def pending(self, client, services):
        service = services["service"]
        service.update_config(confirm_before_save=True, confirm_timeout_seconds=30,
                              backup_enabled=False)
        report = service.tick(True, now=later(15))
        assert report.confirmation_pending
        return service

    def test_status_shows_countdown(self, client, pending):
        data = client.get("/api/status").get_json()
        assert 0 < data["confirmation"]["remaining_seconds"] <= 30

    def test_save_now(self, client, pending):
        resp = client.post("/api/confirmation/save-now")
        assert resp.status_code == 200
        assert resp.get_json()["saved"] is True
        assert pending.confirmation is None

    def test_save_now_without_pending(self, client):
        assert client.post("/api/confirmation/save-now").status_code == 409

    def test_save_now_failure(self, client, pending, monkeypatch):
        def disk_full():
            raise ActionIOError("disk full")

        monkeypatch.setattr(pending.executor, "save_all", disk_full)
        before = pending.state.last_save_at
        resp = client.post("/api/confirmation/save-now")
        assert resp.status_code == 500
        data = resp.get_json()
        assert data["saved"] is False
        assert "disk full" in data["error"]
        assert pending.state.last_save_at == before

    def test_socket_save_now_failure(self, pending, monkeypatch):
        def disk_full():
            raise ActionIOError("disk full")

        monkeypatch.setattr(pending.executor, "save_all", disk_full)
        reply = handle_command(pending, json.dumps({"command": "save-now"}))
        assert reply == {"type": "reply", "data": {"command": "save-now", "ok": False}}

    def test_skip(self, client, pending):
        assert client.post("/api/confirmation/skip").get_json() == {"skipped": True}
        assert client.post("/api/confirmation/skip").get_json() == {"skipped": False}

    def test_late_client_sees_countdown(self, pending, ws_handler):
        ws = FakeWebSocket()
        ws_handler.register(ws)
        assert ws.messages[-1]["type"] == "confirmation_started"
        assert ws.messages[-1]["data"]["timeout_seconds"] == 30

    def test_save_now_closes_countdown_for_clients(self, client, pending, ws_handler):
        ws = FakeWebSocket()
        ws_handler.register(ws)
        client.post("/api/confirmation/save-now")
        assert ws.messages[-1] == {"type": "confirmation_closed",
                                   "data": {"outcome": "saved"}}

    def test_socket_skip_command(self, pending):
        reply = handle_command(pending, json.dumps({"command": "skip"}))
        assert reply == {"type": "reply", "data": {"command": "skip", "ok": True}}
        assert pending.confirmation is None

    def test_transition(self, client):
        assert client.post("/api/transition").get_json() == {"saved": True}

    def test_transition_disabled_by_setting(self, client):
        client.put("/api/config", json={"save_on_transition": False})
        assert client.post("/api/transition").get_json() == {"saved": False}


# ---------------------------------------------------------------------------
# WebSocket broadcast
# ---------------------------------------------------------------------------

class TestWebSocketBroadcast:
    def test_service_events_reach_clients(self, client, ws_handler, services):
        ws = FakeWebSocket()
        ws_handler.register(ws)
        services["service"].tick(False, now=later(25))
        types = [m["type"] for m in ws.messages]
        assert "backup" in types
        assert "pruned" in types

    def test_status_lines_broadcast(self, client, ws_handler):
        ws = FakeWebSocket()
        ws_handler.register(ws)
        client.put("/api/config", json={"save_interval_minutes": -1})
        status = [m for m in ws.messages if m["type"] == "status"]
        assert status[-1]["data"]["level"] == "ERROR"

    def test_dead_clients_dropped(self, ws_handler):
        ws_handler.register(FakeWebSocket(broken=True))
        ws_handler.register(FakeWebSocket())
        ws_handler.broadcast("saved", {"at": "now"})
        assert ws_handler.client_count == 1

    def test_unregister_unknown_is_noop(self, ws_handler):
        ws_handler.unregister(FakeWebSocket())
        assert ws_handler.client_count == 0

    def test_only_latest_status_replayed(self, ws_handler):
        ws_handler.broadcast("status", {"message": "first"})
        ws_handler.broadcast("status", {"message": "second"})
        ws_handler.broadcast("saved", {"at": "now"})
        ws = FakeWebSocket()
        ws_handler.register(ws)
        assert ws.messages == [{"type": "status", "data": {"message": "second"}}]


class TestSocketCommands:
    def test_ping(self, services):
        assert handle_command(services["service"], '{"command": "ping"}')["type"] == "pong"

    def test_save_now_without_pending(self, services):
        reply = handle_command(services["service"], '{"command": "save-now"}')
        assert reply["data"]["ok"] is False

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"command": "explode"}'])
    def test_bad_commands(self, services, raw):
        assert handle_command(services["service"], raw)["type"] == "error"
