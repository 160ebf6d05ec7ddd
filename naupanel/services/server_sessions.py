# naupanel/services/server_sessions.py
"""
Per-server session state

Handles:
- Lifecycle state (offline / online / restarting) and last action
- Bounded console log buffer
- Synchronous fan-out of appended lines to subscribed console sinks

All mutation happens on the event loop thread. Appending a line and
delivering it to every subscriber happen in one step without suspending,
so subscribers see lines exactly in append order.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from naupanel.core.config import DEFAULT_LOG_TAIL, LOG_BUFFER_LIMIT

logger = logging.getLogger(__name__)

STATUS_OFFLINE = "offline"
STATUS_ONLINE = "online"
STATUS_RESTARTING = "restarting"
VALID_STATUSES = frozenset({STATUS_OFFLINE, STATUS_ONLINE, STATUS_RESTARTING})

# action -> (resulting status, log line)
LIFECYCLE_ACTIONS = {
    "start": (STATUS_ONLINE, "[INFO] Server started"),
    "stop": (STATUS_OFFLINE, "[INFO] Server stopped"),
    "restart": (STATUS_ONLINE, "[INFO] Server restarted"),
}


class ConsoleSink(Protocol):
    def deliver(self, message: dict) -> None: ...


@dataclass
class ServerLifecycleState:
    status: str = STATUS_OFFLINE
    last_action: Optional[str] = None
    last_action_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "lastAction": self.last_action,
            "lastActionAt": self.last_action_at,
        }


def parse_limit(value: Any, default: int = DEFAULT_LOG_TAIL) -> int:
    """Coerce a tail limit: non-numeric -> default, otherwise clamped to >= 1."""
    if value is None or isinstance(value, bool):
        return default
    try:
        limit = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(1, limit)


class ServerSession:
    """State, log buffer and console subscribers of one server."""

    def __init__(self, server_id: str, buffer_limit: int = LOG_BUFFER_LIMIT):
        self.server_id = server_id
        self.state = ServerLifecycleState()
        self.log_buffer: deque[str] = deque(maxlen=buffer_limit)
        self.subscribers: set[ConsoleSink] = set()

    # ------------------------------------------------------------------
    # Log buffer
    # ------------------------------------------------------------------

    def append_log(self, line: str) -> None:
        self.log_buffer.append(line)
        message = {"type": "log", "line": line}
        for sink in list(self.subscribers):
            try:
                sink.deliver(message)
            except Exception:
                logger.warning("Dropping console subscriber for %s after delivery failure",
                               self.server_id, exc_info=True)
                self.subscribers.discard(sink)

    def tail(self, limit: Any = DEFAULT_LOG_TAIL) -> list[str]:
        limit = parse_limit(limit)
        if limit >= len(self.log_buffer):
            return list(self.log_buffer)
        return list(self.log_buffer)[-limit:]

    # ------------------------------------------------------------------
    # Lifecycle state
    # ------------------------------------------------------------------

    def apply_action(self, action: str) -> ServerLifecycleState:
        if action not in LIFECYCLE_ACTIONS:
            raise ValueError(f"Unknown lifecycle action: {action}")
        status, line = LIFECYCLE_ACTIONS[action]
        self.state.status = status
        self.state.last_action = action
        self.state.last_action_at = datetime.now(timezone.utc).isoformat()
        self.append_log(line)
        return self.state

    def set_status(self, status: str) -> ServerLifecycleState:
        if status not in VALID_STATUSES:
            raise ValueError(f"Unknown status: {status}")
        if self.state.status != status:
            logger.info("Server %s status %s -> %s", self.server_id, self.state.status, status)
        self.state.status = status
        return self.state


class SessionStore:
    """Process-wide owner of every ServerSession, keyed by server id."""

    def __init__(self):
        self._sessions: dict[str, ServerSession] = {}

    def get_or_create(self, server_id: str) -> ServerSession:
        session = self._sessions.get(server_id)
        if session is None:
            session = ServerSession(server_id)
            self._sessions[server_id] = session
        return session

    def find(self, server_id: str) -> Optional[ServerSession]:
        return self._sessions.get(server_id)

    def clear(self) -> None:
        self._sessions.clear()


# =============================================================================
# Singleton + module-level API
# =============================================================================

_store = SessionStore()


def get_store() -> SessionStore:
    return _store


def get_session(server_id: str) -> ServerSession:
    return _store.get_or_create(server_id)


def get_state(server_id: str) -> ServerLifecycleState:
    return _store.get_or_create(server_id).state


def apply_action(server_id: str, action: str) -> ServerLifecycleState:
    return _store.get_or_create(server_id).apply_action(action)


def set_status(server_id: str, status: str) -> ServerLifecycleState:
    return _store.get_or_create(server_id).set_status(status)


def append_log(server_id: str, line: str) -> None:
    _store.get_or_create(server_id).append_log(line)


def tail_logs(server_id: str, limit: Any = DEFAULT_LOG_TAIL) -> list[str]:
    session = _store.find(server_id)
    if session is None:
        return []
    return session.tail(limit)
