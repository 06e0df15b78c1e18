"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from giveaway_overlay.utils.logger import get_logger

logger = get_logger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_FILE = PROJECT_ROOT / "config" / "overlay.conf"

# Environment prefixes and the config section each one overrides.
ENV_SECTIONS = {
    "SERVER_": "server",
    "GIVEAWAY_": "giveaway",
    "LEADERBOARD_": "leaderboard",
    "DATABASE_": "database",
    "AUTH_": "auth",
}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "server": {
        "host": "0.0.0.0",
        "port": 3000,
        "enable_test_routes": False,
    },
    "giveaway": {
        "tick_interval_ms": 1000,
        "checkpoint_interval_ms": 10000,
    },
    "leaderboard": {
        "debounce_ms": 1000,
        "bits_leaders_count": 10,
        "subs_leaders_count": 10,
    },
    "database": {
        "filename": "giveaway.db",
    },
    "auth": {},
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from files and environment variables"""
    config: Dict[str, Any] = {section: dict(values) for section, values in DEFAULTS.items()}

    path = Path(config_file or os.environ.get("OVERLAY_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r') as f:
                file_config = json.load(f)
            for section, values in file_config.items():
                if isinstance(values, dict):
                    config.setdefault(section, {}).update(values)
                else:
                    config[section] = values
            logger.info(f"Loaded configuration from {path}")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config file: {e}")
    else:
        logger.warning(f"Config file {path} not found. Will only use defaults and environment variables.")

    config = _apply_env_overrides(config)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(config, indent=2)}")
    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default


def get_int(config: Dict[str, Any], key_path: str, default: int) -> int:
    """Read an integer setting; env overrides arrive as strings."""
    value = get_config_value(config, key_path, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer for {key_path}: {value!r}; using {default}")
        return default


def get_bool(config: Dict[str, Any], key_path: str, default: bool = False) -> bool:
    value = get_config_value(config, key_path, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
