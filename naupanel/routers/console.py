# naupanel/routers/console.py
"""
Live console WebSocket

client -> {"type": "subscribe", "serverId": ..., "limit": ...} | {"type": "command", "command": ...}
server -> {"type": "logs", "logs": [...]} | {"type": "log", "line": ...} | {"type": "heartbeat"}
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from naupanel.core.errors import PanelError
from naupanel.services import console_broker
from naupanel.services import server_registry
from naupanel.services.console_broker import ConsoleConnection

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL = 30.0


def parse_client_message(raw: Optional[str]) -> Optional[dict]:
    """Decode a client frame; anything malformed is dropped (None)."""
    if not raw:
        return None
    try:
        message = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        return None
    return message


async def handle_client_message(connection: ConsoleConnection, message: dict) -> None:
    msg_type = message["type"]

    if msg_type == "subscribe":
        server_id = message.get("serverId")
        if not isinstance(server_id, str) or not server_id:
            return
        try:
            server_registry.get_server(server_id)
        except PanelError as e:
            connection.deliver({"type": "error", "error": e.message})
            return
        console_broker.subscribe(connection, server_id, message.get("limit"))

    elif msg_type == "command":
        await console_broker.on_command(connection, message.get("command"))


async def _pump_outbox(websocket: WebSocket, connection: ConsoleConnection) -> None:
    """Send queued messages in order; heartbeat when idle."""
    while True:
        try:
            message = await asyncio.wait_for(connection.outbox.get(), timeout=HEARTBEAT_INTERVAL)
        except asyncio.TimeoutError:
            message = {"type": "heartbeat"}
        await websocket.send_json(message)


@router.websocket("/ws/console")
async def console_socket(websocket: WebSocket):
    """WebSocket endpoint for real-time console streaming"""
    await websocket.accept()

    connection = ConsoleConnection()
    sender = asyncio.create_task(_pump_outbox(websocket, connection))

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            raw = frame.get("text")
            if raw is None and frame.get("bytes") is not None:
                raw = frame["bytes"].decode("utf-8", errors="ignore")
            message = parse_client_message(raw)
            if message is None:
                continue
            await handle_client_message(connection, message)
            if sender.done():
                break
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.debug("Console WebSocket error", exc_info=True)
    finally:
        console_broker.unsubscribe(connection)
        sender.cancel()
        try:
            await sender
        except (asyncio.CancelledError, Exception):
            pass
