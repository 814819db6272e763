"""Environment-driven settings and on-disk client state."""

import json
import logging
import os
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:3001/api"

# Safety ceiling for REST calls, not an operational timeout.
REQUEST_TIMEOUT = 3600.0

PAGE_SIZE = 100

DEFAULT_HIDDEN_TYPES = frozenset({"tool_use", "thinking"})


def get_api_base_url() -> str:
    """Return the base URL of the board's REST API."""
    return os.environ.get("KANBAN_API_URL", DEFAULT_API_URL).rstrip("/")


def get_ws_url() -> str:
    """Return the realtime endpoint, derived from the API URL when unset."""
    env = os.environ.get("KANBAN_WS_URL")
    if env:
        return env

    url = get_api_base_url()
    if url.endswith("/api"):
        url = url[: -len("/api")]
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


def get_config_dir() -> Path:
    """Return the directory holding the token and UI preferences."""
    env = os.environ.get("KANBAN_CONFIG_DIR")
    if env:
        return Path(env)

    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "kanban-sync"
    else:  # macOS and Linux
        return Path.home() / ".config" / "kanban-sync"


def get_token_path() -> Path:
    return get_config_dir() / "token.json"


def get_preferences_path() -> Path:
    return get_config_dir() / "preferences.json"


# ── Token store ──────────────────────────────────────────────────


def load_token() -> str | None:
    """Return the stored bearer token if present and unexpired.

    An expired token is removed from disk.
    """
    path = get_token_path()
    if not path.exists():
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read token file %s: %s", path, e)
        return None

    token = data.get("token") if isinstance(data, dict) else None
    expiry = data.get("expiry") if isinstance(data, dict) else None
    if not token or not isinstance(expiry, (int, float)):
        return None

    if time.time() * 1000 > expiry:
        logger.info("Stored token expired, removing it")
        clear_token()
        return None
    return token


def save_token(token: str, expires_in: float) -> Path:
    """Persist a token valid for ``expires_in`` seconds."""
    path = get_token_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    expiry = int((time.time() + expires_in) * 1000)
    path.write_text(json.dumps({"token": token, "expiry": expiry}), encoding="utf-8")
    return path


def clear_token() -> None:
    try:
        get_token_path().unlink()
    except FileNotFoundError:
        pass


# ── Preferences ──────────────────────────────────────────────────


def load_hidden_types() -> set[str]:
    """Return the message types the chat view hides."""
    path = get_preferences_path()
    if not path.exists():
        return set(DEFAULT_HIDDEN_TYPES)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        hidden = data["hiddenMessageTypes"]
    except (json.JSONDecodeError, OSError, KeyError, TypeError):
        return set(DEFAULT_HIDDEN_TYPES)

    if not isinstance(hidden, list):
        return set(DEFAULT_HIDDEN_TYPES)
    return {t for t in hidden if isinstance(t, str)}


def save_hidden_types(types: set[str]) -> None:
    path = get_preferences_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"hiddenMessageTypes": sorted(types)}), encoding="utf-8")
