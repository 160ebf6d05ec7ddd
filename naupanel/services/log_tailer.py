# naupanel/services/log_tailer.py
"""
Game log tailer

Follows <server root>/logs/latest.log for every registered server and feeds
new lines into that server's console buffer.

Lifecycle: start_tailers() and stop_tailers(), called from the app lifespan.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from naupanel.core.config import LOG_TAIL_INTERVAL
from naupanel.services import server_sessions
from naupanel.services.minecraft_utils import strip_minecraft_colors
from naupanel.services.server_registry import ServerDefinition

logger = logging.getLogger(__name__)

# Log messages to filter out (noise from our own RCON polling)
LOG_FILTER_PATTERNS = [
    "Thread RCON Client",
    "Rcon issued server command: /list",
    "Rcon issued server command: /tps",
]

ROTATION_MARKER = "[PANEL] Log file rotated"


def should_filter_log(message: str) -> bool:
    for pattern in LOG_FILTER_PATTERNS:
        if pattern in message:
            return True
    return False


class LogTailer:
    """Incremental reader of one server's latest.log."""

    def __init__(self, server_id: str, log_file: Path):
        self.server_id = server_id
        self.log_file = log_file
        self.position: int = 0
        self.inode: Optional[int] = None
        self.task: Optional[asyncio.Task] = None

    def seek_to_end(self) -> None:
        """Skip content written before the panel started watching."""
        try:
            stat = self.log_file.stat()
        except OSError:
            self.position = 0
            self.inode = None
            return
        self.position = stat.st_size
        self.inode = stat.st_ino

    def read_new_lines(self) -> list[str]:
        """Return lines appended since the last call (runs in thread)."""
        try:
            stat = self.log_file.stat()
        except OSError:
            return []

        lines = []
        if self.inode is not None and (stat.st_ino != self.inode or stat.st_size < self.position):
            logger.info(
                "Log file rotated for %s (inode: %s -> %s, size: %s -> %s)",
                self.server_id, self.inode, stat.st_ino, self.position, stat.st_size,
            )
            self.position = 0
            lines.append(ROTATION_MARKER)
        self.inode = stat.st_ino

        if stat.st_size == self.position:
            return lines

        with open(self.log_file, "rb") as f:
            f.seek(self.position)
            chunk = f.read()

        # A trailing partial line stays unread until its newline arrives
        end = chunk.rfind(b"\n")
        if end == -1:
            return lines
        self.position += end + 1

        for raw in chunk[:end].split(b"\n"):
            message = strip_minecraft_colors(raw.decode("utf-8", errors="ignore").rstrip())
            if message and not should_filter_log(message):
                lines.append(message)
        return lines

    async def run(self, interval: float = LOG_TAIL_INTERVAL) -> None:
        logger.info("Log tailer started for %s (%s)", self.server_id, self.log_file)
        try:
            while True:
                try:
                    lines = await asyncio.to_thread(self.read_new_lines)
                    for line in lines:
                        server_sessions.append_log(self.server_id, line)
                except OSError as e:
                    logger.error("Error reading log file for %s: %s", self.server_id, e)
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Log tailer cancelled for %s", self.server_id)
            raise


# ─── Lifecycle ────────────────────────────────────────────────────

_tailers: dict[str, LogTailer] = {}


def start_tailers(servers: list[ServerDefinition]) -> int:
    """Start one tailer task per server. Must be called from the event loop."""
    for server in servers:
        if server.id in _tailers:
            continue
        tailer = LogTailer(server.id, server.path / "logs" / "latest.log")
        tailer.seek_to_end()
        tailer.task = asyncio.create_task(tailer.run())
        _tailers[server.id] = tailer
    return len(_tailers)


async def stop_tailers() -> None:
    for tailer in list(_tailers.values()):
        if tailer.task and not tailer.task.done():
            tailer.task.cancel()
            try:
                await tailer.task
            except asyncio.CancelledError:
                pass
    _tailers.clear()
