"""Static configuration for groupwatch.

All user-editable settings (classification rules, dedup, notifications,
digest schedule) live in a single JSON file for quick edits without touching
Python. The ``classification`` block is served live by JsonConfigStore; the
rest is read once here at startup.
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits at the project root; GROUPWATCH_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("GROUPWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(
            f"Config file not found: {CONFIG_PATH} (copy config.example.json to start)"
        )

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite message log.
DB_PATH = _resolve_path(_CONFIG.get("db_path", "groupwatch.db"))

# Ingestion guards:
# - DEDUP_CAPACITY: fingerprints kept before the cache is cleared
# - RATE_MIN_INTERVAL_MS: minimum spacing between accepted events
_ingestion = _CONFIG.get("ingestion", {})
DEDUP_CAPACITY = int(_ingestion.get("dedup_capacity", 1000))
RATE_MIN_INTERVAL_MS = int(_ingestion.get("rate_min_interval_ms", 500))

# Remote AI call deadline; the endpoint and model live in the classification block.
AI_TIMEOUT_SECONDS = float(_CONFIG.get("ai", {}).get("timeout_seconds", 30))

# Notification snippet size used by all notifier adapters.
_notifications = _CONFIG.get("notifications", {})
SNIPPET_CHARS = int(_notifications.get("snippet_chars", 400))
# Notification method switches adapters without changing core logic.
NOTIFICATION_METHOD = _notifications.get("notification_method", "saved_messages")
# Bot chat id is only required when notification_method=bot.
BOT_CHAT_ID = _notifications.get("bot_chat_id")

# Daily digest schedule (HH:MM local time).
_digest = _CONFIG.get("digest", {})
DIGEST_ENABLED = bool(_digest.get("enabled", True))
DIGEST_TIME = str(_digest.get("time", "20:00"))

# Messages older than this are purged at startup and after each digest.
RETENTION_DAYS = int(_CONFIG.get("retention_days", 7))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
