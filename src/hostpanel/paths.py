"""Canonical filesystem paths for hostpanel configuration and state."""

from __future__ import annotations

import os
from pathlib import Path

HOSTPANEL_CONFIG_DIR = Path(os.environ.get("HOSTPANEL_CONFIG_DIR", "/etc/hostpanel")).expanduser()

_env_config = os.environ.get("HOSTPANEL_CONFIG")
DEFAULT_CONFIG_PATH = (
    Path(_env_config).expanduser() if _env_config else HOSTPANEL_CONFIG_DIR / "hostpanel.toml"
)

_env_state = os.environ.get("HOSTPANEL_STATE_DIR")
STATE_DIR = Path(_env_state).expanduser() if _env_state else Path("/var/lib/hostpanel")

_env_db = os.environ.get("HOSTPANEL_DB_PATH")
DEFAULT_DB_PATH = Path(_env_db).expanduser() if _env_db else STATE_DIR / "hostpanel.db"

_env_lock = os.environ.get("HOSTPANEL_LOCK_PATH")
DEFAULT_LOCK_PATH = Path(_env_lock).expanduser() if _env_lock else Path("/run/lock/hostpanel.lock")

LOG_DIR = STATE_DIR / "logs"
