# naupanel/routers/files.py
"""
File browser endpoints, confined to each server's root directory
"""

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse

from naupanel.core.errors import InvalidRequest
from naupanel.routers.servers import read_json_object
from naupanel.services import server_files
from naupanel.services import server_registry

router = APIRouter(prefix="/api/servers/{server_id}/files")


def _string_field(body: dict, key: str, required: bool = True) -> str:
    value = body.get(key)
    if value is None:
        if required:
            raise InvalidRequest(f"'{key}' is required.")
        return ""
    if not isinstance(value, str):
        raise InvalidRequest(f"'{key}' must be a string.")
    return value


@router.get("")
async def list_files(server_id: str, path: str = ""):
    server = server_registry.get_server(server_id)
    entries = await asyncio.to_thread(server_files.list_entries, server.path, path)
    return {"entries": entries}


@router.get("/content")
async def read_file(server_id: str, path: str = ""):
    server = server_registry.get_server(server_id)
    content = await asyncio.to_thread(server_files.read_text, server.path, path)
    return {"content": content}


@router.post("/content")
async def save_file(server_id: str, request: Request):
    server = server_registry.get_server(server_id)
    body = await read_json_object(request)
    path = _string_field(body, "path")
    content = _string_field(body, "content", required=False)
    await asyncio.to_thread(server_files.write_text, server.path, path, content)
    return {"ok": True}


@router.post("/dir")
async def create_folder(server_id: str, request: Request):
    server = server_registry.get_server(server_id)
    body = await read_json_object(request)
    await asyncio.to_thread(server_files.make_directory, server.path, _string_field(body, "path"))
    return {"ok": True}


@router.post("/rename")
async def rename_entry(server_id: str, request: Request):
    server = server_registry.get_server(server_id)
    body = await read_json_object(request)
    source = _string_field(body, "from")
    destination = _string_field(body, "to")
    await asyncio.to_thread(server_files.rename, server.path, source, destination)
    return {"ok": True}


@router.delete("")
async def delete_entry(server_id: str, path: str = ""):
    server = server_registry.get_server(server_id)
    await asyncio.to_thread(server_files.delete, server.path, path)
    return {"ok": True}


@router.post("/upload")
async def upload_file(server_id: str, request: Request):
    server = server_registry.get_server(server_id)
    body = await read_json_object(request)
    stored = await asyncio.to_thread(
        server_files.write_upload,
        server.path,
        _string_field(body, "path", required=False),
        _string_field(body, "name"),
        _string_field(body, "contentBase64", required=False),
    )
    return {"ok": True, "path": stored}


@router.get("/download")
async def download_file(server_id: str, path: str = ""):
    server = server_registry.get_server(server_id)
    target = await asyncio.to_thread(server_files.resolve_download, server.path, path)
    return FileResponse(target, filename=target.name)
