import os
import json
from pathlib import Path
from typing import Optional

CONFIG_DIR = Path.home() / ".agrimarket"
CONFIG_FILE = CONFIG_DIR / "config.json"
TOKEN_FILE = CONFIG_DIR / "token.txt"
SERVER_URL = os.getenv("AGRIMARKET_SERVER_URL", "http://localhost:8000")


def _load_config() -> dict:
    CONFIG_DIR.mkdir(exist_ok=True)
    if CONFIG_FILE.exists():
        return json.loads(CONFIG_FILE.read_text())
    return {}


def _save_config(config: dict):
    CONFIG_DIR.mkdir(exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config, indent=2))


def get_token() -> Optional[str]:
    """Get stored API token."""
    CONFIG_DIR.mkdir(exist_ok=True)
    if TOKEN_FILE.exists():
        return TOKEN_FILE.read_text().strip()
    return None


def save_token(token: str):
    CONFIG_DIR.mkdir(exist_ok=True)
    TOKEN_FILE.write_text(token)


def get_display_name() -> Optional[str]:
    """Name shown to sellers on bids, set at login."""
    return _load_config().get("display_name")


def save_display_name(name: str):
    config = _load_config()
    config["display_name"] = name
    _save_config(config)


def get_timezone() -> str:
    """Display timezone: config file, then $TZ, then UTC."""
    configured_tz = _load_config().get("timezone")
    if configured_tz:
        return configured_tz
    return os.getenv("TZ") or "UTC"
