from __future__ import annotations

import os


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


# Bump when DEFAULT_STORES changes; opening an older database adds the missing stores.
SCHEMA_VERSION = 4

PENDING_SYNC_STORE = "pending_sync"

DEFAULT_STORES = (
    "goals",
    "habits",
    "habit_logs",
    "time_blocks",
    "categories",
    "reading_list",
    "user_profile",
    PENDING_SYNC_STORE,
    "weekly_goals",
    "weekly_habits",
    "weekly_habit_logs",
    "monthly_data",
    "daily_entries",
    "action_plans",
    "mood_entries",
    "sleep_entries",
    "water_entries",
    "calendar_events",
    "canvas_documents",
    "kanban_boards",
    "kanban_columns",
    "kanban_cards",
    "checklist_items",
    "attachments",  # metadata only, never file contents
    "comments",
    "activity_log",
    "interval_challenges",
    "challenge_habits",
    "challenge_completions",
)

_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS

# Freshness window per store, in milliseconds.
CACHE_TTL_MS = {
    "goals": 24 * _HOUR_MS,
    "habits": 12 * _HOUR_MS,
    "habit_logs": 5 * _MINUTE_MS,
    "time_blocks": 5 * _MINUTE_MS,
    "categories": 24 * _HOUR_MS,
    "reading_list": 12 * _HOUR_MS,
    "user_profile": 24 * _HOUR_MS,
    "weekly_goals": 12 * _HOUR_MS,
    "weekly_habits": 12 * _HOUR_MS,
    "weekly_habit_logs": 5 * _MINUTE_MS,
    "monthly_data": 30 * _MINUTE_MS,
    "daily_entries": 5 * _MINUTE_MS,
    "action_plans": 30 * _MINUTE_MS,
    "mood_entries": 5 * _MINUTE_MS,
    "sleep_entries": 5 * _MINUTE_MS,
    "water_entries": 5 * _MINUTE_MS,
    "calendar_events": 5 * _MINUTE_MS,
    "canvas_documents": 30 * _MINUTE_MS,
    "kanban_boards": 30 * _MINUTE_MS,
    "kanban_columns": 30 * _MINUTE_MS,
    "kanban_cards": 5 * _MINUTE_MS,
    "checklist_items": 5 * _MINUTE_MS,
    "attachments": 30 * _MINUTE_MS,
    "comments": 5 * _MINUTE_MS,
    "activity_log": 5 * _MINUTE_MS,
    "interval_challenges": 12 * _HOUR_MS,
    "challenge_habits": 12 * _HOUR_MS,
    "challenge_completions": 5 * _MINUTE_MS,
}
DEFAULT_CACHE_TTL_MS = 10 * _MINUTE_MS

# Local database
DB_PATH = _env_str("PLANNER_DB_PATH", "data/planner_cache.sqlite3")
SQLITE_BUSY_TIMEOUT_MS = _env_int("SQLITE_BUSY_TIMEOUT_MS", 30000)

# Remote backend
API_BASE_URL = _env_str("PLANNER_API_BASE_URL", "http://localhost:8000/api")
API_KEY = os.getenv("PLANNER_API_KEY")
API_TIMEOUT_S = _env_float("PLANNER_API_TIMEOUT_S", 10.0)

# Realtime feed keepalive/reconnect
FEED_URL = _env_str("PLANNER_FEED_URL", "ws://localhost:8765/changes")
WS_PING_INTERVAL_S = _env_int("WS_PING_INTERVAL_S", 20)
WS_PING_TIMEOUT_S = _env_int("WS_PING_TIMEOUT_S", 60)
WS_RECONNECT_BACKOFF_S = _env_float("WS_RECONNECT_BACKOFF_S", 1.0)
WS_RECONNECT_BACKOFF_MAX_S = _env_float("WS_RECONNECT_BACKOFF_MAX_S", 30.0)
WS_OPEN_TIMEOUT_S = _env_float("WS_OPEN_TIMEOUT_S", 10.0)
WS_MAX_QUEUE = _env_int("WS_MAX_QUEUE", 256)

# TLS verification should remain enabled by default.
INSECURE_TLS = _env_bool("INSECURE_TLS", False)

# 0 keeps the whole diagnostic history per store.
REALTIME_HISTORY_LIMIT = _env_int("REALTIME_HISTORY_LIMIT", 1000)
