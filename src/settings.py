"""Static configuration for fanout.

All user-editable settings (database, rate limits, request limits, logging)
live in a single JSON file for quick edits without touching Python. Secrets
stay in the environment / .env file.
"""

import json
import os

from dotenv import load_dotenv

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Settings are loaded from config.json so operators can tune limits without
# editing code.
CONFIG_PATH = os.environ.get("FANOUT_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


load_dotenv()

_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database (relative paths are under the project root).
_database = _CONFIG.get("database", {})
DB_PATH = _database.get("path", "fanout.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Provider admission caps. Environment variables win so deployments can tune
# them per account tier without editing config.json.
_rate_limits = _CONFIG.get("rate_limits", {})
RATE_LIMIT_PER_SECOND = _env_int("TWILIO_RATE_LIMIT_PER_SECOND", int(_rate_limits.get("per_second", 1)))
RATE_LIMIT_PER_MINUTE = _env_int("TWILIO_RATE_LIMIT_PER_MINUTE", int(_rate_limits.get("per_minute", 60)))
RATE_LIMIT_CLEANUP_INTERVAL_SECONDS = float(_rate_limits.get("cleanup_interval_seconds", 300))

# Request limits applied before any lookup or send.
_limits = _CONFIG.get("limits", {})
MAX_BATCH_SIZE = int(_limits.get("max_batch_size", 100))
MAX_MESSAGE_LENGTH = int(_limits.get("max_message_length", 1600))

# Dispatch behaviour. All sends share one rate-limit scope.
_dispatch = _CONFIG.get("dispatch", {})
DISPATCH_SCOPE = _dispatch.get("scope", "whatsapp")
_timeout = _dispatch.get("send_timeout_seconds", 30)
SEND_TIMEOUT_SECONDS = float(_timeout) if _timeout else None

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
