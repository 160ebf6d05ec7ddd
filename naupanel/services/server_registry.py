# naupanel/services/server_registry.py
"""
Server Registry

Loads the managed server definitions once at startup and serves read-only
lookups afterwards. A failed load leaves the registry unloaded, and every
lookup then reports that no servers are configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from naupanel.core.config import DEFAULT_RCON_HOST, DEFAULT_RCON_PORT
from naupanel.core.errors import ConfigInvalid, RegistryUnavailable, ServerNotFound
from naupanel.services.minecraft_utils import slugify

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RconSettings:
    """RCON endpoint of one server"""
    host: str = DEFAULT_RCON_HOST
    port: int = DEFAULT_RCON_PORT
    password: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.password)


@dataclass(frozen=True)
class ServerDefinition:
    id: str
    name: str
    path: Path
    port: int
    description: Optional[str] = None
    rcon: Optional[RconSettings] = None

    @property
    def rcon_configured(self) -> bool:
        return self.rcon is not None and self.rcon.configured

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "path": str(self.path),
            "port": self.port,
            "rconConfigured": self.rcon_configured,
        }
        if self.description:
            data["description"] = self.description
        return data


def _parse_port(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigInvalid(f"{label} must be an integer")
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigInvalid(f"{label} must be an integer")
    if not 1 <= port <= 65535:
        raise ConfigInvalid(f"{label} out of range: {port}")
    return port


def _parse_rcon(raw: Any, index: int) -> Optional[RconSettings]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"servers[{index}].rcon must be a mapping")
    password = raw.get("password") or ""
    if not isinstance(password, str):
        password = str(password)
    return RconSettings(
        host=str(raw.get("host") or DEFAULT_RCON_HOST),
        port=_parse_port(raw.get("port", DEFAULT_RCON_PORT), f"servers[{index}].rcon.port"),
        password=password,
    )


def parse_server_definition(raw: Any, index: int) -> ServerDefinition:
    """Validate one registry entry; any problem rejects the whole registry."""
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"servers[{index}] must be a mapping")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigInvalid(f"servers[{index}] is missing a name")

    raw_path = raw.get("path")
    if not isinstance(raw_path, str) or not raw_path.strip():
        raise ConfigInvalid(f"servers[{index}] is missing a path")
    path = Path(raw_path.strip()).expanduser()
    if not path.is_absolute():
        raise ConfigInvalid(f"servers[{index}].path must be absolute")

    if "port" not in raw:
        raise ConfigInvalid(f"servers[{index}] is missing a port")
    port = _parse_port(raw["port"], f"servers[{index}].port")

    server_id = raw.get("id")
    server_id = slugify(str(server_id)) if server_id is not None else slugify(name)
    if not server_id:
        raise ConfigInvalid(f"servers[{index}] has an empty id")

    description = raw.get("description")
    return ServerDefinition(
        id=server_id,
        name=name.strip(),
        path=path,
        port=port,
        description=str(description) if description else None,
        rcon=_parse_rcon(raw.get("rcon"), index),
    )


def parse_registry(data: Any) -> list[ServerDefinition]:
    if isinstance(data, dict):
        data = data.get("servers")
    if not isinstance(data, list):
        raise ConfigInvalid("Expected a 'servers' list")

    servers = []
    seen: set[str] = set()
    for index, raw in enumerate(data):
        server = parse_server_definition(raw, index)
        if server.id in seen:
            raise ConfigInvalid(f"Duplicate server id: {server.id}")
        seen.add(server.id)
        servers.append(server)
    return servers


class ServerRegistry:
    """Process-wide, read-only list of managed servers."""

    def __init__(self):
        self._servers: Optional[dict[str, ServerDefinition]] = None
        self.load_error: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self._servers is not None

    def install(self, servers: list[ServerDefinition]) -> None:
        self._servers = {server.id: server for server in servers}
        self.load_error = None

    def unload(self, reason: Optional[str] = None) -> None:
        self._servers = None
        self.load_error = reason

    def load(self, path: Path) -> list[ServerDefinition]:
        """Load the registry from a YAML (or JSON) file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            servers = parse_registry(data)
        except ConfigInvalid as e:
            self.unload(e.message)
            raise
        except (OSError, yaml.YAMLError) as e:
            self.unload(str(e))
            raise ConfigInvalid(f"Unable to read server config: {e}")

        self.install(servers)
        logger.info("Loaded %d server definition(s) from %s", len(servers), path)
        return servers

    def all(self) -> list[ServerDefinition]:
        if self._servers is None:
            raise RegistryUnavailable()
        return list(self._servers.values())

    def get(self, server_id: str) -> ServerDefinition:
        if self._servers is None:
            raise RegistryUnavailable()
        server = self._servers.get(server_id)
        if server is None:
            raise ServerNotFound()
        return server


# =============================================================================
# Singleton + module-level API
# =============================================================================

_registry = ServerRegistry()


def load_registry(path: Path) -> list[ServerDefinition]:
    return _registry.load(path)


def install_servers(servers: list[ServerDefinition]) -> None:
    _registry.install(servers)


def unload_registry(reason: Optional[str] = None) -> None:
    _registry.unload(reason)


def is_loaded() -> bool:
    return _registry.loaded


def get_servers() -> list[ServerDefinition]:
    return _registry.all()


def get_server(server_id: str) -> ServerDefinition:
    return _registry.get(server_id)
