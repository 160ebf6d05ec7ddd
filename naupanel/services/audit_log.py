# naupanel/services/audit_log.py
"""
Panel audit trail

Every operator action (lifecycle actions, console commands) is written as one
JSON object per line to logs/panel_audit.log. Files are rotated by size just
before a record is written: panel_audit.log -> .1 -> .2 ... up to
AUDIT_ROTATE_RETENTION backups.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

from naupanel.core.config import AUDIT_LOG_FILE

AUDIT_LOGGER_NAME = "panel_audit"
AUDIT_ROTATE_MAX_BYTES = int(os.getenv("AUDIT_ROTATE_MAX_BYTES", str(1024 * 1024)))
AUDIT_ROTATE_RETENTION = int(os.getenv("AUDIT_ROTATE_RETENTION", "5"))


def get_audit_logger() -> logging.Logger:
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    if audit_logger.handlers:
        return audit_logger

    audit_logger.setLevel(logging.INFO)
    AUDIT_LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(AUDIT_LOG_FILE, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))
    audit_logger.addHandler(file_handler)
    return audit_logger


def _backup_path(log_path: Path, index: int) -> Path:
    return log_path.with_name(f"{log_path.name}.{index}")


def _shift_backups(log_path: Path, retention: int) -> None:
    for index in range(retention, 0, -1):
        backup = _backup_path(log_path, index)
        if not backup.exists():
            continue
        if index == retention:
            backup.unlink()
        else:
            backup.replace(_backup_path(log_path, index + 1))
    log_path.replace(_backup_path(log_path, 1))


def rotate_if_needed(handler: logging.FileHandler) -> bool:
    """Rotate the handler's file once it reaches AUDIT_ROTATE_MAX_BYTES."""
    if AUDIT_ROTATE_MAX_BYTES <= 0:
        return False

    log_path = Path(handler.baseFilename)
    handler.acquire()
    try:
        handler.flush()
        try:
            size = log_path.stat().st_size
        except FileNotFoundError:
            return False
        if size < AUDIT_ROTATE_MAX_BYTES:
            return False

        _shift_backups(log_path, max(AUDIT_ROTATE_RETENTION, 1))
        if handler.stream:
            handler.stream.close()
        handler.stream = handler._open()
        return True
    finally:
        handler.release()


def audit_event(*, logger: logging.Logger, actor: str, action: str, target: str = "", result: str = "", extra: dict[str, Any] | None = None) -> None:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            rotate_if_needed(handler)

    record: dict[str, Any] = {"ts": int(time.time()), "actor": actor, "action": action, "target": target, "result": result}
    record.update(extra or {})
    logger.info(json.dumps(record, ensure_ascii=False))
