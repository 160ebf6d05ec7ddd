import os
from pathlib import Path

from dotenv import load_dotenv

# ==========================================
# Path Configuration
# ==========================================

CORE_DIR = Path(__file__).resolve().parent
PACKAGE_DIR = CORE_DIR.parent
ROOT_DIR = PACKAGE_DIR.parent

ENV_FILE = ROOT_DIR / ".env"
load_dotenv(dotenv_path=ENV_FILE)

CONFIG_FILES_DIR = ROOT_DIR / "config_files"
LOGS_DIR = ROOT_DIR / "logs"
AUDIT_LOG_FILE = LOGS_DIR / "panel_audit.log"

_raw_servers_file = os.getenv("SERVERS_CONFIG_FILE", str(CONFIG_FILES_DIR / "servers.yml")).strip()
SERVERS_CONFIG_FILE = Path(_raw_servers_file).expanduser()
if not SERVERS_CONFIG_FILE.is_absolute():
    SERVERS_CONFIG_FILE = ROOT_DIR / SERVERS_CONFIG_FILE


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


# ==========================================
# Console / Log Buffer Configuration
# ==========================================

LOG_BUFFER_LIMIT = int(os.getenv("LOG_BUFFER_LIMIT", "200"))
DEFAULT_LOG_TAIL = int(os.getenv("DEFAULT_LOG_TAIL", "50"))
MAX_COMMAND_LENGTH = 256

TAIL_SERVER_LOGS = _env_flag("TAIL_SERVER_LOGS", "true")
LOG_TAIL_INTERVAL = float(os.getenv("LOG_TAIL_INTERVAL", "1.0"))

# Off by default: console commands are echoed into the log buffer only.
FORWARD_CONSOLE_COMMANDS = _env_flag("FORWARD_CONSOLE_COMMANDS", "false")

# ==========================================
# RCON Configuration
# ==========================================

DEFAULT_RCON_HOST = "127.0.0.1"
DEFAULT_RCON_PORT = 25575
RCON_PROBE_TIMEOUT = float(os.getenv("RCON_PROBE_TIMEOUT", "1.5"))
RCON_STATS_TIMEOUT = float(os.getenv("RCON_STATS_TIMEOUT", "3.0"))
RCON_COMMAND_TIMEOUT = float(os.getenv("RCON_COMMAND_TIMEOUT", "3.0"))

# ==========================================
# App Configuration
# ==========================================

APP_VERSION = os.getenv("APP_VERSION", "0.3.0")
PORT = int(os.getenv("PORT", "3000"))
HOST = os.getenv("HOST", "127.0.0.1")

_cors_origins = os.getenv("CORS_ORIGINS", "*")
CORS_ORIGINS = [origin.strip() for origin in _cors_origins.split(",") if origin.strip()]
