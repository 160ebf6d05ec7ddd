# naupanel/services/minecraft_utils.py
"""
Shared Minecraft text utilities.

Contains:
- Colour code stripping for RCON responses and log lines
- server.properties parsing
- Player list parsing from RCON /list responses
- TPS parsing from RCON /tps responses
- Slug generation for server ids
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

_PLAYER_LIST_RE = re.compile(
    r'There are\s+(\d+)\s+of a max(?:imum)?\s+of\s+(\d+)\s+players online:?(.*)',
    flags=re.IGNORECASE | re.DOTALL,
)
_TRAILING_DECIMAL_RE = re.compile(r'(\d+(?:\.\d+)?)\s*$')
_SLUG_SEPARATOR_RE = re.compile(r'[^a-z0-9]+')


@dataclass
class PlayerList:
    online: int = 0
    max: int = 0
    names: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"online": self.online, "max": self.max, "names": list(self.names)}


def strip_minecraft_colors(text: str) -> str:
    """Strip Minecraft color/formatting codes (§X) from text"""
    return re.sub(r'§.', '', text)


def load_server_properties(path: Path) -> dict:
    """Load a server.properties file; missing or unreadable files yield {}"""
    props = {}
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    props[key.strip()] = value.strip()
    except OSError:
        return {}
    return props


def parse_player_list(rcon_response: str) -> PlayerList:
    """
    Parse an RCON /list response.

    Handles format: "There are X of a max of Y players online: player1, player2"
    Anything else yields an empty PlayerList rather than an error.
    """
    match = _PLAYER_LIST_RE.search(strip_minecraft_colors(rcon_response or ""))
    if not match:
        return PlayerList()
    names_part = match.group(3).strip()
    names = [name.strip() for name in names_part.split(",") if name.strip()] if names_part else []
    return PlayerList(online=int(match.group(1)), max=int(match.group(2)), names=names)


def parse_tps(text: str) -> Optional[float]:
    """
    Parse the trailing decimal of a /tps response.

    Paper prints e.g. "TPS from last 1m, 5m, 15m: 20.0, 19.98, *20.0";
    the last number is used.
    """
    if not text:
        return None
    cleaned = strip_minecraft_colors(text).strip().rstrip("*").strip()
    match = _TRAILING_DECIMAL_RE.search(cleaned)
    if match:
        return float(match.group(1))
    return None


def slugify(name: str) -> str:
    """Derive a server id from a display name ("Nau Survival" -> "nau-survival")"""
    return _SLUG_SEPARATOR_RE.sub("-", name.strip().lower()).strip("-")
