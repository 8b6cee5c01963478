"""
.env support for the CLI.

Only ``EMS_SYNC_*`` settings are taken from .env files; anything else a
project keeps there stays out of the process environment. Files are read
in order with later files winning:

- ~/.config/ems-sync/.env (or the XDG equivalent)
- .env in the project directory

A variable already set in the shell always wins over both.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

from .loader import ENV_OVERRIDES, get_xdg_config_home

logger = logging.getLogger(__name__)

ENV_PREFIX = "EMS_SYNC_"


def default_env_paths(project_dir: Path | None = None) -> list[Path]:
    """User .env first, then the project's."""
    if project_dir is None:
        project_dir = Path.cwd()
    return [get_xdg_config_home() / "ems-sync" / ".env", project_dir / ".env"]


def read_env_settings(paths: Iterable[Path]) -> dict[str, str]:
    """
    Collect ``EMS_SYNC_*`` settings from .env files.

    Keys without the prefix are skipped silently. Prefixed keys that name
    no known setting are warned about, since they are most likely typos.
    """
    settings: dict[str, str] = {}
    for path in paths:
        path = Path(path)
        if not path.is_file():
            continue
        for key, value in dotenv_values(path).items():
            if not key or not key.startswith(ENV_PREFIX) or value is None:
                continue
            if key not in ENV_OVERRIDES:
                logger.warning("Unknown setting %s in %s, ignoring", key, path)
                continue
            settings[key] = value
    return settings


def load_layered_env(
    project_dir: Path | None = None,
    env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """
    Export .env settings the shell does not define yet.

    Args:
        project_dir: Directory holding the project .env (defaults to cwd)
        env_paths: Explicit files to read instead of the defaults

    Returns:
        Names of the variables this call added to os.environ
    """
    paths = list(env_paths) if env_paths is not None else default_env_paths(project_dir)

    added: set[str] = set()
    for key, value in read_env_settings(paths).items():
        if key in os.environ:
            continue
        os.environ[key] = value
        added.add(key)

    if added:
        logger.debug("Loaded %s from .env files", ", ".join(sorted(added)))
    return added
