# naupanel/services/console_broker.py
"""
Live Console Broker

Tracks which server each live console connection is watching. Subscribing
sends a snapshot of the buffered lines and registers the connection in the
same non-suspending step, so every later append reaches it exactly once.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from naupanel.core.config import DEFAULT_LOG_TAIL, FORWARD_CONSOLE_COMMANDS, MAX_COMMAND_LENGTH
from naupanel.core.errors import PanelError
from naupanel.services import rcon
from naupanel.services import server_registry
from naupanel.services import server_sessions
from naupanel.services.server_sessions import SessionStore, parse_limit

logger = logging.getLogger(__name__)

_CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f]')


class ConsoleConnection:
    """One live console client; messages queue up until the socket drains them."""

    def __init__(self):
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.server_id: Optional[str] = None
        self.limit: int = DEFAULT_LOG_TAIL

    def deliver(self, message: dict) -> None:
        self.outbox.put_nowait(message)


def sanitize_command(text: Any) -> str:
    """Trim, strip control characters and cap length; '' means "ignore"."""
    if text is None:
        return ""
    command = _CONTROL_CHARS_RE.sub("", str(text)).strip()
    return command[:MAX_COMMAND_LENGTH]


class ConsoleBroker:
    def __init__(self, store: Optional[SessionStore] = None):
        self._store = store
        self._connections: dict[ConsoleConnection, str] = {}

    @property
    def store(self) -> SessionStore:
        return self._store if self._store is not None else server_sessions.get_store()

    def subscribe(self, connection: ConsoleConnection, server_id: str, limit: Any = None) -> list[str]:
        """(Re-)subscribe a connection and push its snapshot."""
        self.unsubscribe(connection)
        session = self.store.get_or_create(server_id)
        connection.limit = parse_limit(limit, default=connection.limit)
        connection.server_id = server_id

        snapshot = session.tail(connection.limit)
        connection.deliver({"type": "logs", "logs": snapshot})
        session.subscribers.add(connection)
        self._connections[connection] = server_id
        logger.debug("Console subscribed to %s (%d subscriber(s))", server_id, len(session.subscribers))
        return snapshot

    def update_limit(self, connection: ConsoleConnection, limit: Any) -> int:
        """Record a new tail limit; history is only resent on the next subscribe."""
        connection.limit = parse_limit(limit, default=connection.limit)
        return connection.limit

    def unsubscribe(self, connection: ConsoleConnection) -> None:
        server_id = self._connections.pop(connection, None)
        connection.server_id = None
        if server_id is None:
            return
        session = self.store.find(server_id)
        if session is not None:
            session.subscribers.discard(connection)

    def subscribed_to(self, connection: ConsoleConnection) -> Optional[str]:
        return self._connections.get(connection)

    def subscriber_count(self, server_id: str) -> int:
        session = self.store.find(server_id)
        return len(session.subscribers) if session else 0

    def on_command(self, connection: ConsoleConnection, text: Any) -> Optional[str]:
        server_id = self._connections.get(connection)
        if server_id is None:
            return None
        return record_command(self.store, server_id, text)


def record_command(store: SessionStore, server_id: str, text: Any) -> Optional[str]:
    """Echo a console command into the log buffer. Returns the command or None if ignored."""
    command = sanitize_command(text)
    if not command:
        return None
    session = store.get_or_create(server_id)
    session.append_log(f"[CMD] {command}")
    session.append_log(f"[INFO] Executed command: {command}")
    return command


async def forward_command(server_id: str, command: str) -> None:
    """Dispatch a command over RCON and append the response (FORWARD_CONSOLE_COMMANDS)."""
    try:
        server = server_registry.get_server(server_id)
    except PanelError:
        return
    if not server.rcon_configured:
        return

    session = server_sessions.get_session(server_id)
    try:
        response = await rcon.send_command(server, command)
    except (PanelError, ConnectionError) as e:
        reason = e.message if isinstance(e, PanelError) else str(e)
        session.append_log(f"[WARN] Command dispatch failed: {reason}")
        return

    for line in response.splitlines():
        if line.strip():
            session.append_log(f"[RCON] {line.rstrip()}")


async def submit_command(server_id: str, text: Any) -> Optional[str]:
    """Record a command for a server and, when enabled, forward it over RCON."""
    command = record_command(server_sessions.get_store(), server_id, text)
    if command and FORWARD_CONSOLE_COMMANDS:
        await forward_command(server_id, command)
    return command


# =============================================================================
# Singleton + module-level API
# =============================================================================

_broker = ConsoleBroker()


def get_broker() -> ConsoleBroker:
    return _broker


def subscribe(connection, server_id: str, limit: Any = None) -> list[str]:
    return _broker.subscribe(connection, server_id, limit)


def update_limit(connection, limit: Any) -> int:
    return _broker.update_limit(connection, limit)


def unsubscribe(connection) -> None:
    _broker.unsubscribe(connection)


async def on_command(connection, text: Any) -> Optional[str]:
    server_id = _broker.subscribed_to(connection)
    if server_id is None:
        return None
    return await submit_command(server_id, text)
