# naupanel/services/rcon.py
"""
Minecraft RCON Protocol Client and Remote-Console Gateway

Handles:
- RCON connection and authentication
- Command execution
- Short-lived sessions that are always released (probe, stats, commands)
"""

import asyncio
import logging
import socket
import struct
from dataclasses import dataclass
from typing import Optional

from naupanel.core.config import RCON_COMMAND_TIMEOUT, RCON_PROBE_TIMEOUT
from naupanel.core.errors import RconNotConfigured, RconUnreachable
from naupanel.services.minecraft_utils import strip_minecraft_colors
from naupanel.services.server_registry import RconSettings, ServerDefinition

logger = logging.getLogger(__name__)


class RCONClient:
    """Minecraft RCON protocol client"""

    SERVERDATA_AUTH = 3
    SERVERDATA_AUTH_RESPONSE = 2
    SERVERDATA_EXECCOMMAND = 2
    SERVERDATA_RESPONSE_VALUE = 0
    MAX_PAYLOAD_SIZE = 4096  # Standard RCON max response payload
    PACKET_OVERHEAD = 10  # request id + type + two NUL terminators

    def __init__(self, host: str, port: int, password: str, timeout: float = RCON_COMMAND_TIMEOUT):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.socket: Optional[socket.socket] = None
        self.request_id = 0

    def __enter__(self):
        """Context manager entry - connect and authenticate"""
        if self.connect():
            return self
        self.disconnect()
        raise RconUnreachable(f"Failed to connect to RCON at {self.host}:{self.port}")

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - disconnect"""
        self.disconnect()
        return False

    def _pack_packet(self, packet_type: int, payload: str) -> bytes:
        """Pack a packet for sending"""
        self.request_id += 1
        payload_bytes = payload.encode("utf-8") + b"\x00\x00"
        length = 4 + 4 + len(payload_bytes)
        return struct.pack("<iii", length, self.request_id, packet_type) + payload_bytes

    def _recv_exact(self, size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.socket.recv(remaining)
            if not chunk:
                raise ConnectionError("Connection lost")
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def _read_packet(self) -> tuple:
        """Read a packet from the socket"""
        length = struct.unpack("<i", self._recv_exact(4))[0]
        if length < self.PACKET_OVERHEAD or length > self.MAX_PAYLOAD_SIZE + self.PACKET_OVERHEAD:
            raise ConnectionError(f"RCON packet size out of bounds: {length}")

        data = self._recv_exact(length)
        request_id = struct.unpack("<i", data[0:4])[0]
        packet_type = struct.unpack("<i", data[4:8])[0]
        payload = data[8:-2].decode("utf-8", errors="replace")

        return request_id, packet_type, payload

    def connect(self) -> bool:
        """Connect and authenticate"""
        try:
            self.socket = socket.create_connection((self.host, self.port), timeout=self.timeout)
            self.socket.settimeout(self.timeout)

            self.socket.sendall(self._pack_packet(self.SERVERDATA_AUTH, self.password))

            request_id, _, _ = self._read_packet()

            # Auth failure is signalled by request id -1
            if request_id == -1:
                logger.warning("[RCON] Authentication rejected by %s:%s", self.host, self.port)
                self.disconnect()
                return False
            return True

        except (OSError, ConnectionError, struct.error) as e:
            logger.warning("[RCON] Connection to %s:%s failed: %s", self.host, self.port, e)
            self.disconnect()
            return False

    def send_command(self, command: str) -> str:
        """Send a command and get response"""
        if not self.socket:
            raise ConnectionError("Not connected")

        try:
            self.socket.sendall(self._pack_packet(self.SERVERDATA_EXECCOMMAND, command))
            expected_id = self.request_id
            while True:
                request_id, _, payload = self._read_packet()
                if request_id == expected_id:
                    return payload
                logger.debug("[RCON] Discarding reply for request %s (waiting for %s)", request_id, expected_id)
        except (OSError, struct.error) as e:
            raise ConnectionError(f"Command failed: {e}")

    def disconnect(self):
        """Close connection"""
        if self.socket:
            try:
                self.socket.close()
            except OSError:
                pass
            self.socket = None


# =============================================================================
# Gateway
# =============================================================================

@dataclass
class CommandResult:
    command: str
    response: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _require_rcon(server: ServerDefinition) -> RconSettings:
    if server.rcon is None or not server.rcon.configured:
        raise RconNotConfigured()
    return server.rcon


def _run_session_sync(settings: RconSettings, commands: list[str], timeout: float) -> list[CommandResult]:
    """Open one session, run each command, always close. Runs in a worker thread."""
    results = []
    with RCONClient(settings.host, settings.port, settings.password, timeout=timeout) as client:
        failure: Optional[str] = None
        for command in commands:
            # After a failed read the socket is out of step with the request ids
            if failure is not None:
                results.append(CommandResult(command, error=f"Skipped after earlier failure: {failure}"))
                continue
            try:
                response = client.send_command(command)
                results.append(CommandResult(command, response=strip_minecraft_colors(response)))
            except ConnectionError as e:
                logger.debug("[RCON] Command %r failed: %s", command, e)
                failure = str(e)
                results.append(CommandResult(command, error=failure))
    return results


async def run_session(settings: RconSettings, commands: list[str], timeout: float) -> list[CommandResult]:
    """
    Run commands in one RCON session without blocking the event loop.

    Raises RconUnreachable when connect/authenticate fails or the whole
    session overruns its time budget. Individual command failures are
    reported per CommandResult so callers can soft-fail them.
    """
    budget = timeout * (len(commands) + 2)
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(_run_session_sync, settings, commands, timeout),
            timeout=budget,
        )
    except asyncio.TimeoutError:
        raise RconUnreachable(f"RCON session timed out after {budget:.1f}s")


def _probe_sync(settings: RconSettings, timeout: float) -> bool:
    client = RCONClient(settings.host, settings.port, settings.password, timeout=timeout)
    try:
        return client.connect()
    finally:
        client.disconnect()


async def probe(server: ServerDefinition, timeout: float = RCON_PROBE_TIMEOUT) -> bool:
    """Liveness probe: can we open and authenticate an RCON session?"""
    settings = _require_rcon(server)
    try:
        return await asyncio.wait_for(asyncio.to_thread(_probe_sync, settings, timeout), timeout=timeout * 2)
    except asyncio.TimeoutError:
        return False


async def send_command(server: ServerDefinition, command: str, timeout: float = RCON_COMMAND_TIMEOUT) -> str:
    """Send a single command; raises RconNotConfigured / RconUnreachable / ConnectionError"""
    settings = _require_rcon(server)
    [result] = await run_session(settings, [command], timeout)
    if not result.ok:
        raise ConnectionError(result.error)
    return result.response or ""


async def open_stats_session(server: ServerDefinition, commands: list[str], timeout: float) -> list[CommandResult]:
    settings = _require_rcon(server)
    return await run_session(settings, commands, timeout)
