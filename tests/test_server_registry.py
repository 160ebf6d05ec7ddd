import pytest

from naupanel.core.errors import ConfigInvalid, RegistryUnavailable, ServerNotFound
from naupanel.services.server_registry import ServerRegistry


def _write_config(tmp_path, text: str):
    config_file = tmp_path / "servers.yml"
    config_file.write_text(text, encoding="utf-8")
    return config_file


def test_load_valid_registry_derives_slug_ids(tmp_path):
    config_file = _write_config(tmp_path, """
servers:
  - name: Nau Survival
    path: /srv/minecraft/nau-survival
    port: 25565
    description: Vanilla survival
    rcon:
      password: hunter2
  - id: creative
    name: Nau Creative
    path: /srv/minecraft/nau-creative
    port: "25566"
""")
    registry = ServerRegistry()

    servers = registry.load(config_file)

    assert [s.id for s in servers] == ["nau-survival", "creative"]
    survival = registry.get("nau-survival")
    assert survival.port == 25565
    assert survival.rcon.host == "127.0.0.1"
    assert survival.rcon.port == 25575
    assert survival.rcon_configured is True
    assert registry.get("creative").rcon_configured is False
    assert registry.get("creative").port == 25566


def test_server_payload_never_exposes_rcon_password(tmp_path):
    config_file = _write_config(tmp_path, """
- name: Alpha
  path: /srv/alpha
  port: 25565
  rcon: {password: secret}
""")
    registry = ServerRegistry()
    registry.load(config_file)

    payload = registry.get("alpha").to_dict()

    assert payload == {
        "id": "alpha",
        "name": "Alpha",
        "path": "/srv/alpha",
        "port": 25565,
        "rconConfigured": True,
    }


def test_json_config_is_accepted(tmp_path):
    config_file = _write_config(
        tmp_path,
        '{"servers": [{"name": "Alpha", "path": "/srv/alpha", "port": 25565}]}',
    )
    registry = ServerRegistry()

    assert [s.id for s in registry.load(config_file)] == ["alpha"]


@pytest.mark.parametrize(
    "entry",
    [
        "{path: /srv/a, port: 25565}",
        "{name: A, port: 25565}",
        "{name: A, path: /srv/a}",
        "{name: A, path: /srv/a, port: not-a-port}",
        "{name: A, path: /srv/a, port: 70000}",
        "{name: A, path: relative/dir, port: 25565}",
        "{name: A, path: /srv/a, port: 25565, rcon: nope}",
    ],
)
def test_malformed_entry_rejects_whole_registry(tmp_path, entry):
    config_file = _write_config(tmp_path, f"""
servers:
  - {{name: Good, path: /srv/good, port: 25565}}
  - {entry}
""")
    registry = ServerRegistry()

    with pytest.raises(ConfigInvalid):
        registry.load(config_file)

    assert registry.loaded is False
    with pytest.raises(RegistryUnavailable):
        registry.all()


def test_duplicate_ids_reject_registry(tmp_path):
    config_file = _write_config(tmp_path, """
servers:
  - {name: Nau Survival, path: /srv/a, port: 25565}
  - {id: nau-survival, name: Other, path: /srv/b, port: 25566}
""")
    registry = ServerRegistry()

    with pytest.raises(ConfigInvalid, match="Duplicate"):
        registry.load(config_file)


def test_missing_config_file_leaves_registry_unloaded(tmp_path):
    registry = ServerRegistry()

    with pytest.raises(ConfigInvalid):
        registry.load(tmp_path / "missing.yml")

    assert registry.load_error
    with pytest.raises(RegistryUnavailable):
        registry.get("anything")


def test_unknown_server_raises_not_found(tmp_path):
    config_file = _write_config(tmp_path, "servers: [{name: Alpha, path: /srv/alpha, port: 25565}]")
    registry = ServerRegistry()
    registry.load(config_file)

    with pytest.raises(ServerNotFound):
        registry.get("beta")
