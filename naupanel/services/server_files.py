# naupanel/services/server_files.py
"""
Path-scoped file access for a server's directory.

Every relative path is resolved against the server root and must stay below
it; anything else is rejected before the filesystem is touched. I/O failures
are reported as generic "Unable to ..." messages without internal paths.
"""

import base64
import binascii
import logging
import shutil
from pathlib import Path

from naupanel.core.errors import FileNotFoundInServer, FileOperationError, InvalidRequest, PathTraversal

logger = logging.getLogger(__name__)


def normalize_relative(path: str) -> str:
    """'/config//server.properties/' -> 'config/server.properties'"""
    parts = [part for part in str(path or "").replace("\\", "/").split("/") if part and part != "."]
    return "/".join(parts)


def resolve_server_path(root: Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root`` or raise PathTraversal."""
    raw = str(relative or "").replace("\\", "/")
    if "\x00" in raw or any(part == ".." for part in raw.split("/")):
        raise PathTraversal()
    rel = normalize_relative(raw)
    # Windows drive prefixes ("C:") would re-root the join
    if rel and ":" in rel.split("/")[0]:
        raise PathTraversal()

    root_resolved = root.resolve()
    candidate = (root_resolved / rel).resolve() if rel else root_resolved
    try:
        candidate.relative_to(root_resolved)
    except ValueError:
        raise PathTraversal()
    return candidate


def _relative_to_root(root: Path, path: Path) -> str:
    return path.relative_to(root.resolve()).as_posix()


def _require_not_root(root: Path, path: Path) -> None:
    if path == root.resolve():
        raise InvalidRequest("The server root cannot be modified.")


def list_entries(root: Path, relative: str = "") -> list[dict]:
    target = resolve_server_path(root, relative)
    if not target.exists():
        raise FileNotFoundInServer("Directory not found.")
    if not target.is_dir():
        raise InvalidRequest("Path is not a directory.")

    entries = []
    try:
        children = list(target.iterdir())
    except OSError as e:
        logger.warning("Listing %s failed: %s", target, e)
        raise FileOperationError("Unable to list directory.")

    for child in children:
        try:
            is_dir = child.is_dir()
            entry = {
                "name": child.name,
                "path": _relative_to_root(root, target / child.name),
                "type": "dir" if is_dir else "file",
            }
            if not is_dir:
                entry["size"] = child.stat().st_size
        except OSError:
            continue
        entries.append(entry)

    entries.sort(key=lambda e: (e["type"] != "dir", e["name"].lower()))
    return entries


def _require_file(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundInServer()
    if not path.is_file():
        raise InvalidRequest("Path is not a file.")


def read_text(root: Path, relative: str) -> str:
    target = resolve_server_path(root, relative)
    _require_file(target)
    try:
        return target.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Reading %s failed: %s", target, e)
        raise FileOperationError("Unable to read file.")


def resolve_download(root: Path, relative: str) -> Path:
    """Validated path of an existing file, for streaming back to the client."""
    target = resolve_server_path(root, relative)
    _require_file(target)
    return target


def write_text(root: Path, relative: str, content: str) -> None:
    target = resolve_server_path(root, relative)
    _require_not_root(root, target)
    if target.is_dir():
        raise InvalidRequest("Path is a directory.")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.warning("Writing %s failed: %s", target, e)
        raise FileOperationError("Unable to save file.")


def write_upload(root: Path, relative_dir: str, name: str, content_base64: str) -> str:
    filename = Path(str(name or "")).name
    if not filename or filename != str(name) or filename in {".", ".."}:
        raise PathTraversal("Invalid file name.")
    try:
        data = base64.b64decode(content_base64 or "", validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequest("Upload content is not valid base64.")

    directory = resolve_server_path(root, relative_dir)
    target = resolve_server_path(root, f"{_relative_to_root(root, directory)}/{filename}")
    try:
        directory.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as e:
        logger.warning("Upload to %s failed: %s", target, e)
        raise FileOperationError("Unable to upload file.")
    return _relative_to_root(root, target)


def make_directory(root: Path, relative: str) -> None:
    target = resolve_server_path(root, relative)
    _require_not_root(root, target)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Creating %s failed: %s", target, e)
        raise FileOperationError("Unable to create folder.")


def rename(root: Path, source: str, destination: str) -> None:
    src = resolve_server_path(root, source)
    dst = resolve_server_path(root, destination)
    _require_not_root(root, src)
    _require_not_root(root, dst)
    if not src.exists():
        raise FileNotFoundInServer()
    if dst.exists():
        raise InvalidRequest("Destination already exists.")
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        src.rename(dst)
    except OSError as e:
        logger.warning("Renaming %s -> %s failed: %s", src, dst, e)
        raise FileOperationError("Unable to rename.")


def delete(root: Path, relative: str) -> None:
    target = resolve_server_path(root, relative)
    _require_not_root(root, target)
    if not target.exists():
        raise FileNotFoundInServer()
    try:
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError as e:
        logger.warning("Deleting %s failed: %s", target, e)
        raise FileOperationError("Unable to delete.")
