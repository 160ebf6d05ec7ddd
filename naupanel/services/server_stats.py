# naupanel/services/server_stats.py
"""
On-demand server stats collector

Combines, for one server:
- RCON /list and /tps (players and ticks-per-second)
- Host CPU load and memory
- CPU% and RSS of the server's Java process
- World directory size

Only the RCON connection is fatal to the whole snapshot; every other
sub-collection falls back to a null/zero value.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import psutil

from naupanel.core.config import RCON_STATS_TIMEOUT
from naupanel.core.errors import RconUnreachable, StatsUnavailable
from naupanel.services import rcon
from naupanel.services import server_sessions
from naupanel.services.minecraft_utils import PlayerList, load_server_properties, parse_player_list, parse_tps
from naupanel.services.process_sampler import ProcessSampler, default_sampler
from naupanel.services.server_registry import ServerDefinition

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_NAME = "world"

_sampler: Optional[ProcessSampler] = None


def get_sampler() -> ProcessSampler:
    global _sampler
    if _sampler is None:
        _sampler = default_sampler()
    return _sampler


def set_sampler(sampler: Optional[ProcessSampler]) -> None:
    global _sampler
    _sampler = sampler


def sample_host() -> dict:
    """Host CPU (1-minute load per core) and memory; never fails."""
    try:
        load_1m = psutil.getloadavg()[0]
    except (AttributeError, OSError):
        load_1m = 0.0
    cores = psutil.cpu_count() or 1
    mem = psutil.virtual_memory()
    return {
        "cpuPercent": min(100, round(load_1m / cores * 100)),
        "memUsedMB": round(mem.used / (1024 * 1024)),
        "memTotalMB": round(mem.total / (1024 * 1024)),
        "memPercent": round(mem.percent),
    }


def resolve_world_path(root: Path) -> tuple[str, Path]:
    """Resolve level-name from server.properties to a directory under root."""
    props = load_server_properties(root / "server.properties")
    level_name = props.get("level-name", "").strip() or DEFAULT_LEVEL_NAME
    candidate = root / level_name
    try:
        candidate.resolve().relative_to(root.resolve())
    except (ValueError, OSError):
        logger.warning("level-name %r escapes server root %s, using %s", level_name, root, DEFAULT_LEVEL_NAME)
        level_name = DEFAULT_LEVEL_NAME
        candidate = root / level_name
    return level_name, candidate


def _calculate_dir_size(path: Path) -> int:
    """Calculate total size of a directory (runs in thread)."""
    total = 0
    try:
        for f in path.rglob("*"):
            try:
                if f.is_file():
                    total += f.stat().st_size
            except OSError:
                pass
    except OSError:
        pass
    return total


async def _collect_world(root: Path) -> dict:
    level_name, world_path = resolve_world_path(root)
    try:
        size = await asyncio.to_thread(_calculate_dir_size, world_path)
    except Exception:
        logger.warning("World size collection failed for %s", world_path, exc_info=True)
        size = 0
    return {"path": level_name, "sizeBytes": size}


async def _collect_process(root: Path) -> Optional[dict]:
    try:
        usage = await asyncio.to_thread(get_sampler().sample, root)
    except Exception:
        logger.warning("Process sampling failed for %s", root, exc_info=True)
        return None
    return usage.to_dict() if usage else None


async def collect(server: ServerDefinition, timeout: float = RCON_STATS_TIMEOUT) -> dict:
    """
    Build a stats snapshot for one server.

    Raises:
        RconNotConfigured: the server has no RCON password (status untouched)
        StatsUnavailable: RCON could not be reached (status forced offline)
    """
    try:
        list_result, tps_result = await rcon.open_stats_session(server, ["list", "tps"], timeout)
    except RconUnreachable as e:
        logger.info("Stats unavailable for %s: %s", server.id, e.message)
        server_sessions.set_status(server.id, server_sessions.STATUS_OFFLINE)
        raise StatsUnavailable()

    players = parse_player_list(list_result.response) if list_result.ok else PlayerList()
    tps = parse_tps(tps_result.response) if tps_result.ok else None
    if not tps_result.ok:
        logger.debug("TPS unavailable for %s: %s", server.id, tps_result.error)

    host = sample_host()
    process = await _collect_process(server.path)
    world = await _collect_world(server.path)

    state = server_sessions.set_status(server.id, server_sessions.STATUS_ONLINE)

    return {
        "status": state.status,
        "players": players.to_dict(),
        "tps": tps,
        "host": host,
        "process": process,
        "world": world,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
