"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import math
import os
from pathlib import Path
from typing import Any, Callable

from .models import SyncConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per process
_config_cache: SyncConfig | None = None


def _positive_seconds(raw: str) -> float:
    value = float(raw)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"expected a positive number of seconds, got {raw}")
    return value


def _count(raw: str) -> int:
    value = int(raw)
    if value < 0:
        raise ValueError(f"expected a non-negative count, got {raw}")
    return value


# env var -> (section, key, parser); parsers raise ValueError on unusable input
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "EMS_SYNC_ENDPOINT": ("remote", "endpoint_url", str),
    "EMS_SYNC_FETCH_TIMEOUT": ("remote", "fetch_timeout_seconds", _positive_seconds),
    "EMS_SYNC_WRITE_TIMEOUT": ("remote", "write_timeout_seconds", _positive_seconds),
    "EMS_SYNC_FETCH_RETRIES": ("remote", "fetch_retries", _count),
    "EMS_SYNC_REFRESH_INTERVAL": ("scheduler", "refresh_interval_seconds", _positive_seconds),
    "EMS_SYNC_CACHE_DIR": ("cache", "directory", str),
}


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/ems-sync/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "ems-sync" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """Path to .ems-sync.json in ``cwd`` (defaults to the current directory)."""
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".ems-sync.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence; nested dicts are merged, not replaced.

    Example:
        >>> deep_merge({"remote": {"fetch_retries": 2}}, {"remote": {"endpoint_url": "x"}})
        {'remote': {'fetch_retries': 2, 'endpoint_url': 'x'}}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON object file.

    Returns:
        Parsed JSON as dict, or None if the file is missing, unreadable or
        not an object
    """
    if not path.exists():
        return None
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None
    if isinstance(data, dict):
        return data
    logger.warning("Ignoring config at %s: expected a JSON object", path)
    return None


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply EMS_SYNC_* environment variable overrides.

    Env vars have the highest precedence. Values that do not parse, or
    that the field would reject (zero or non-finite timeouts and intervals,
    negative retry counts), are warned about and ignored.

    Supported env vars:
        EMS_SYNC_ENDPOINT - overrides remote.endpoint_url
        EMS_SYNC_FETCH_TIMEOUT - overrides remote.fetch_timeout_seconds
        EMS_SYNC_WRITE_TIMEOUT - overrides remote.write_timeout_seconds
        EMS_SYNC_FETCH_RETRIES - overrides remote.fetch_retries
        EMS_SYNC_REFRESH_INTERVAL - overrides scheduler.refresh_interval_seconds
        EMS_SYNC_CACHE_DIR - overrides cache.directory
    """
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in config_dict.items()}

    for var, (section, key, parse) in ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw is None or not raw.strip():
            continue
        try:
            value = parse(raw.strip())
        except ValueError as e:
            logger.warning("Invalid %s value '%s', ignoring: %s", var, raw, e)
            continue
        section_dict = result.get(section)
        if not isinstance(section_dict, dict):
            section_dict = {}
        section_dict[key] = value
        result[section] = section_dict

    return result


def get_default_config() -> dict[str, Any]:
    """Hardcoded default configuration."""
    return {
        "remote": {
            "endpoint_url": None,
            "fetch_timeout_seconds": 120.0,
            "write_timeout_seconds": 180.0,
            "fetch_retries": 2,
            "retry_base_delay_seconds": 1.0,
        },
        "scheduler": {"refresh_interval_seconds": 300.0},
        "cache": {"directory": None},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> SyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (EMS_SYNC_*)
        2. Project config (.ems-sync.json)
        3. User config (~/.config/ems-sync/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .ems-sync.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SyncConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = SyncConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
