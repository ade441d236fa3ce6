"""Load application settings from config/settings.yaml."""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

_DEFAULTS: dict[str, Any] = {
    "broker": {
        "max_attempts": 3,
        "retry_delay": 0.5,
        "retry_backoff": 2.0,
        "max_retry_delay": 30.0,
        # False keeps failed messages pending until the next subscribe replays them
        "redeliver": True,
        "handler_timeout": None,
    },
    "ingestion": {
        "topic": "ingestion",
    },
    "dispatcher": {
        "routes": {
            "api": "api",
            "csv": "csv",
            "external-queue": "external-queue",
        },
    },
    "api": {
        "timeout": 5.0,
        "max_retries": 3,
        "retry_delay": 1.0,
        "page_param": "page",
        "page_size_param": "limit",
        "page_size": 100,
    },
    "csv": {
        "max_bytes": 10485760,  # 10 MB
    },
    "logging": {
        "file": "data/logs/ingestor.log",
        "level": "INFO",
        "log_to_console": False,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
    },
}

logger = logging.getLogger(__name__)

_LOG_LEVEL_ENV = "INGESTOR_LOG_LEVEL"

_cached: dict[str, Any] | None = None


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base recursively. Mutates base."""
    for key, value in overlay.items():
        if value is None:
            continue
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_default_settings() -> dict[str, Any]:
    """Return a deep copy of default settings."""
    return copy.deepcopy(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value by dot path (e.g. 'broker.max_attempts')."""
    current: Any = settings
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def reload_settings() -> None:
    """Clear the settings cache. Call after config files change."""
    global _cached
    _cached = None


def load_settings(config_dir: Path | None = None) -> dict[str, Any]:
    """Load settings from config/settings.yaml. Returns merged defaults + file values.

    The INGESTOR_LOG_LEVEL environment variable (also read from .env) wins over
    logging.level from the file.
    """
    global _cached
    if _cached is not None:
        return _cached

    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    path = config_dir / "settings.yaml"

    result = get_default_settings()

    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as e:
            logger.warning("Ignoring unreadable %s, using defaults: %s", path, e)
        else:
            if isinstance(data, dict):
                _deep_merge(result, data)
            elif data is not None:
                logger.warning("Ignoring %s: top level must be a mapping", path)

    env_level = os.environ.get(_LOG_LEVEL_ENV)
    if env_level:
        result["logging"]["level"] = env_level

    _cached = result
    return result
