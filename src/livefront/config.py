"""
livefront runtime configuration.

Centralized defaults for polling intervals, the live server address and the
live-reload client endpoints. Every value can be overridden from the
environment so a watch session can be tuned without touching the CLI.

Environment:
- LIVEFRONT_POLL_INTERVAL: seconds between source polls (default 1.0)
- LIVEFRONT_ASSET_POLL_INTERVAL: seconds between html/css/js polls (default 0.2)
- LIVEFRONT_PORT: live server port (default 3000)
- LIVEFRONT_HOST: live server host (default 127.0.0.1)
- LIVEFRONT_DEBUG=1: debug logging regardless of -v
"""

import os


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def is_debug() -> bool:
    """Check if debug logging was requested through the environment."""
    return os.environ.get("LIVEFRONT_DEBUG") == "1"


# Watch polling
POLL_INTERVAL = _float_env("LIVEFRONT_POLL_INTERVAL", 1.0)
ASSET_POLL_INTERVAL = _float_env("LIVEFRONT_ASSET_POLL_INTERVAL", 0.2)

# Live server
DEFAULT_PORT = _int_env("LIVEFRONT_PORT", 3000)
DEFAULT_HOST = os.environ.get("LIVEFRONT_HOST") or "127.0.0.1"

# Generated assets pushed to browsers on change
LIVE_ASSET_EXTENSIONS = frozenset({"html", "css", "js"})

# Live-reload client endpoints served next to the user's files
CLIENT_SCRIPT_URL = "/livefront/live.js"
WEBSOCKET_PATH = "/livefront/ws"
