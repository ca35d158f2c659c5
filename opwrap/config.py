"""
opwrap configuration.

Paths and defaults live here. Users override them with a JSON file:

    ~/.config/opwrap/config.json   (or $OPWRAP_CONFIG)

    {
        "account": "my.1password.com",
        "backends": {"ci": {"adapter": "onepassword"}},
        "tools": {
            "gh": {
                "strategy": "export",
                "bindings": {"GH_TOKEN": "op://Work/GitHub/token"}
            }
        }
    }
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)


def _xdg_dir(env_var: str, fallback: str) -> Path:
    base = os.getenv(env_var)
    return Path(base) if base else Path.home() / fallback


CONFIG_DIR = _xdg_dir("XDG_CONFIG_HOME", ".config") / "opwrap"
STATE_DIR = _xdg_dir("XDG_STATE_HOME", ".local/state") / "opwrap"

CONFIG_PATH = CONFIG_DIR / "config.json"
SESSION_CACHE_PATH = STATE_DIR / "session.json"

DEFAULT_VAULT = "Key Vault"

# Default configuration if no config file exists
DEFAULT_CONFIG = {
    "account": None,
    "op_binary": "op",
    "service_account_env": "OP_SERVICE_ACCOUNT_TOKEN",
    "store_timeout": 60,
    "child_grace_seconds": 5,
    "session_cache": None,
    "artifact_dir": None,
    "backends": {
        "local": {"adapter": "op-cli"},
        "ci": {"adapter": "op-cli"},
    },
    "extra_platforms": {},
    "tools": {},
}


def config_path() -> Path:
    """Config file location, honouring $OPWRAP_CONFIG."""
    override = os.getenv("OPWRAP_CONFIG")
    return Path(override) if override else CONFIG_PATH


def load_config(path: Optional[Path] = None) -> dict:
    """
    Load configuration, layered over DEFAULT_CONFIG.

    A missing file yields the defaults. An unreadable or malformed file is
    logged and ignored.

    Args:
        path: Config file (default: config_path())

    Returns:
        Merged configuration dict

    Raises:
        ConfigError: If a section that must be an object is not one
    """
    path = path or config_path()
    config = copy.deepcopy(DEFAULT_CONFIG)

    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return config

    try:
        overrides = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load config {path}: {e}")
        return config

    if not isinstance(overrides, dict):
        logger.error(f"Ignoring config {path}: top level must be an object")
        return config

    for key, value in overrides.items():
        if key in ("backends", "extra_platforms", "tools"):
            if not isinstance(value, dict):
                raise ConfigError(f"{path}: \"{key}\" must be an object")
            config[key].update(value)
        else:
            config[key] = value

    for kind, backend in config["backends"].items():
        if not isinstance(backend, dict):
            raise ConfigError(f"{path}: \"backends.{kind}\" must be an object")

    logger.info(f"Loaded config from {path}")
    return config


def backend_config(config: dict, kind: str) -> dict:
    """
    Settings for the backend serving one context kind ("local" or "ci").

    Top-level store settings are inherited; the per-kind block wins.
    """
    merged = {
        key: config[key]
        for key in ("op_binary", "store_timeout", "service_account_env")
        if config.get(key) is not None
    }
    merged.update(config.get("backends", {}).get(kind, {}))
    return merged


def session_cache_path(config: dict) -> Path:
    cache = config.get("session_cache")
    return Path(cache).expanduser() if cache else SESSION_CACHE_PATH


def artifact_dir(config: dict) -> Optional[Path]:
    """
    Where bridge artifacts are created.

    Prefers the per-user runtime directory (tmpfs on most Linux systems);
    None means the platform temp directory.
    """
    configured = config.get("artifact_dir")
    if configured:
        return Path(configured).expanduser()
    runtime = os.getenv("XDG_RUNTIME_DIR")
    if runtime and Path(runtime).is_dir():
        return Path(runtime)
    return None
