# naupanel/routers/servers.py
"""
Server listing, lifecycle control, console log and stats endpoints
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from naupanel.core.errors import InvalidRequest
from naupanel.services import console_broker
from naupanel.services import rcon
from naupanel.services import server_registry
from naupanel.services import server_sessions
from naupanel.services import server_stats
from naupanel.services.audit_log import audit_event, get_audit_logger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _actor(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def read_json_object(request: Request) -> dict:
    """Parse the request body as a JSON object or raise InvalidRequest."""
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequest("Request body must be valid JSON.")
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object.")
    return body


def _server_payload(server_id: str) -> dict:
    server = server_registry.get_server(server_id)
    state = server_sessions.get_state(server_id)
    return {"server": server.to_dict(), "state": state.to_dict()}


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/servers")
async def list_servers():
    """List every configured server"""
    servers = server_registry.get_servers()
    return {"servers": [server.to_dict() for server in servers]}


@router.get("/servers/{server_id}")
async def get_server(server_id: str):
    return _server_payload(server_id)


@router.get("/servers/{server_id}/status")
async def get_server_status(server_id: str):
    """Server state, refreshed by an RCON liveness probe when RCON is configured"""
    server = server_registry.get_server(server_id)
    if server.rcon_configured:
        reachable = await rcon.probe(server)
        server_sessions.set_status(
            server_id,
            server_sessions.STATUS_ONLINE if reachable else server_sessions.STATUS_OFFLINE,
        )
    return _server_payload(server_id)


def _apply_lifecycle_action(request: Request, server_id: str, action: str) -> dict:
    server_registry.get_server(server_id)
    state = server_sessions.apply_action(server_id, action)
    audit_event(
        logger=get_audit_logger(),
        actor=_actor(request),
        action=f"server_{action}",
        target=server_id,
        result=state.status,
    )
    return _server_payload(server_id)


@router.post("/servers/{server_id}/start")
async def start_server(server_id: str, request: Request):
    return _apply_lifecycle_action(request, server_id, "start")


@router.post("/servers/{server_id}/stop")
async def stop_server(server_id: str, request: Request):
    return _apply_lifecycle_action(request, server_id, "stop")


@router.post("/servers/{server_id}/restart")
async def restart_server(server_id: str, request: Request):
    return _apply_lifecycle_action(request, server_id, "restart")


@router.get("/servers/{server_id}/logs")
async def get_server_logs(server_id: str, limit: Optional[str] = None):
    """Tail of the console buffer (polling fallback for the live console)"""
    server_registry.get_server(server_id)
    return {"logs": server_sessions.tail_logs(server_id, limit)}


@router.post("/servers/{server_id}/command")
async def send_server_command(server_id: str, request: Request):
    """Echo a console command into the server's log buffer"""
    server_registry.get_server(server_id)
    body = await read_json_object(request)
    command = body.get("command")
    if command is not None and not isinstance(command, str):
        raise InvalidRequest("'command' must be a string.")

    submitted = await console_broker.submit_command(server_id, command)
    if submitted:
        audit_event(
            logger=get_audit_logger(),
            actor=_actor(request),
            action="console_command",
            target=server_id,
            result="recorded",
            extra={"command": submitted[:100]},
        )
    return {"ok": True}


@router.get("/servers/{server_id}/stats")
async def get_server_stats(server_id: str):
    server = server_registry.get_server(server_id)
    stats = await server_stats.collect(server)
    return JSONResponse(stats)
