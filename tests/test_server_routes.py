import logging
import uuid

from starlette.testclient import TestClient

from naupanel import create_app
from naupanel.core.errors import StatsUnavailable
from naupanel.routers import servers as servers_router
from naupanel.services import rcon
from naupanel.services import server_registry
from naupanel.services import server_sessions
from naupanel.services import server_stats
from naupanel.services.server_registry import ServerRegistry
from naupanel.services.server_sessions import SessionStore

SERVERS_YML = """
servers:
  - name: Alpha
    path: {root}/alpha
    port: 25565
  - name: Beta
    path: {root}/beta
    port: 25566
    rcon:
      password: secret
"""


def _setup_panel(monkeypatch, tmp_path) -> SessionStore:
    config_file = tmp_path / "servers.yml"
    config_file.write_text(SERVERS_YML.format(root=tmp_path), encoding="utf-8")
    registry = ServerRegistry()
    registry.load(config_file)
    store = SessionStore()
    monkeypatch.setattr(server_registry, "_registry", registry)
    monkeypatch.setattr(server_sessions, "_store", store)

    audit_logger = logging.getLogger(f"test.audit.{uuid.uuid4()}")
    audit_logger.propagate = False
    monkeypatch.setattr(servers_router, "get_audit_logger", lambda: audit_logger)
    return store


def test_health_is_ok():
    client = TestClient(create_app())

    resp = client.get("/api/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_list_servers_returns_registry_entries(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    resp = client.get("/api/servers")

    assert resp.status_code == 200
    servers = resp.json()["servers"]
    assert [s["id"] for s in servers] == ["alpha", "beta"]
    assert servers[1]["rconConfigured"] is True
    assert "password" not in str(servers)


def test_unloaded_registry_reports_no_servers(monkeypatch):
    monkeypatch.setattr(server_registry, "_registry", ServerRegistry())
    client = TestClient(create_app())

    resp = client.get("/api/servers")

    assert resp.status_code == 500
    assert resp.json()["error"] == "No servers configured."


def test_unknown_server_is_404_on_every_route(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    assert client.get("/api/servers/nope").status_code == 404
    assert client.post("/api/servers/nope/start").status_code == 404
    assert client.get("/api/servers/nope/logs").status_code == 404
    assert client.post("/api/servers/nope/command", json={"command": "list"}).status_code == 404
    assert client.get("/api/servers/nope/stats").status_code == 404


def test_server_detail_has_default_offline_state(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    resp = client.get("/api/servers/alpha")

    assert resp.status_code == 200
    body = resp.json()
    assert body["server"]["id"] == "alpha"
    assert body["state"] == {"status": "offline", "lastAction": None, "lastActionAt": None}


def test_lifecycle_actions_update_state_and_log(monkeypatch, tmp_path):
    store = _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    started = client.post("/api/servers/alpha/start").json()
    assert started["state"]["status"] == "online"
    assert started["state"]["lastAction"] == "start"

    stopped = client.post("/api/servers/alpha/stop").json()
    assert stopped["state"]["status"] == "offline"

    restarted = client.post("/api/servers/alpha/restart").json()
    assert restarted["state"]["status"] == "online"
    assert restarted["state"]["lastAction"] == "restart"

    assert store.get_or_create("alpha").tail(10) == [
        "[INFO] Server started",
        "[INFO] Server stopped",
        "[INFO] Server restarted",
    ]


def test_logs_limit_is_clamped_and_defaulted(monkeypatch, tmp_path):
    store = _setup_panel(monkeypatch, tmp_path)
    session = store.get_or_create("alpha")
    for i in range(60):
        session.append_log(f"line {i}")
    client = TestClient(create_app())

    assert client.get("/api/servers/alpha/logs?limit=2").json() == {"logs": ["line 58", "line 59"]}
    assert client.get("/api/servers/alpha/logs?limit=0").json() == {"logs": ["line 59"]}
    assert len(client.get("/api/servers/alpha/logs?limit=abc").json()["logs"]) == 50
    assert len(client.get("/api/servers/alpha/logs").json()["logs"]) == 50


def test_logs_of_server_without_activity_are_empty(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    assert client.get("/api/servers/beta/logs").json() == {"logs": []}


def test_command_appends_two_lines(monkeypatch, tmp_path):
    store = _setup_panel(monkeypatch, tmp_path)
    monkeypatch.setattr(servers_router.console_broker, "FORWARD_CONSOLE_COMMANDS", False)
    client = TestClient(create_app())

    resp = client.post("/api/servers/alpha/command", json={"command": "say hello"})

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert store.get_or_create("alpha").tail(10) == [
        "[CMD] say hello",
        "[INFO] Executed command: say hello",
    ]


def test_blank_command_is_accepted_but_not_logged(monkeypatch, tmp_path):
    store = _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    resp = client.post("/api/servers/alpha/command", json={"command": "   "})

    assert resp.status_code == 200
    assert store.get_or_create("alpha").tail(10) == []


def test_command_with_invalid_body_is_400(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    bad_json = client.post(
        "/api/servers/alpha/command",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    not_object = client.post("/api/servers/alpha/command", json=["list"])
    not_string = client.post("/api/servers/alpha/command", json={"command": 42})

    assert bad_json.status_code == 400
    assert not_object.status_code == 400
    assert not_string.status_code == 400
    assert "error" in not_string.json()


def test_status_without_rcon_leaves_state_alone(monkeypatch, tmp_path):
    store = _setup_panel(monkeypatch, tmp_path)
    store.get_or_create("alpha").apply_action("start")

    async def _unexpected_probe(server, timeout=1.5):
        raise AssertionError("probe should not run without RCON")

    monkeypatch.setattr(rcon, "probe", _unexpected_probe)
    client = TestClient(create_app())

    resp = client.get("/api/servers/alpha/status")

    assert resp.json()["state"]["status"] == "online"


def test_status_probe_updates_state(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    outcomes = iter([True, False])

    async def _fake_probe(server, timeout=1.5):
        return next(outcomes)

    monkeypatch.setattr(rcon, "probe", _fake_probe)
    client = TestClient(create_app())

    assert client.get("/api/servers/beta/status").json()["state"]["status"] == "online"
    assert client.get("/api/servers/beta/status").json()["state"]["status"] == "offline"


def test_stats_without_rcon_is_400(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)
    client = TestClient(create_app())

    resp = client.get("/api/servers/alpha/stats")

    assert resp.status_code == 400
    assert resp.json()["code"] == "rcon_not_configured"


def test_stats_unavailable_is_500(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)

    async def _fake_collect(server):
        raise StatsUnavailable()

    monkeypatch.setattr(server_stats, "collect", _fake_collect)
    client = TestClient(create_app())

    resp = client.get("/api/servers/beta/stats")

    assert resp.status_code == 500
    assert resp.json()["code"] == "stats_unavailable"


def test_stats_snapshot_is_returned(monkeypatch, tmp_path):
    _setup_panel(monkeypatch, tmp_path)

    async def _fake_collect(server):
        return {"status": "online", "players": {"online": 1, "max": 20, "names": ["Steve"]}, "tps": 20.0}

    monkeypatch.setattr(server_stats, "collect", _fake_collect)
    client = TestClient(create_app())

    resp = client.get("/api/servers/beta/stats")

    assert resp.status_code == 200
    assert resp.json()["players"]["names"] == ["Steve"]
