"""Layered .env loading for provider credentials.

Provider settings can name an environment variable (``api_key_env``)
instead of embedding a secret in JSON. This module fills the process
environment from .env files before config is loaded:

  os.environ (already exported) > project .env.local > project .env > user .env

Values already present in the process environment are never replaced, so
a shell export or CI secret always wins over a file.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def user_env_path() -> Path:
    """Path to the user-level .env (``$XDG_CONFIG_HOME/cairn/.env``)."""
    xdg_home = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    return xdg_home / "cairn" / ".env"


def project_env_paths(project_dir: Path) -> list[Path]:
    """Project .env files, lowest precedence first."""
    return [project_dir / ".env", project_dir / ".env.local"]


def read_env_file(path: Path) -> dict[str, str]:
    """Parse one .env file, dropping keys without values."""
    if not path.is_file():
        return {}
    return {
        str(key): str(value)
        for key, value in dotenv_values(path).items()
        if key is not None and value is not None
    }


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths_override: Iterable[Path] | None = None,
) -> set[str]:
    """Populate os.environ from user and project .env files.

    Later files override earlier ones, but only for keys that a file set;
    keys exported before this call are left untouched.

    Args:
        project_dir: Base directory for project .env files (defaults to cwd)
        user_env_paths: Explicit user-level files
        project_env_paths_override: Explicit project-level files

    Returns:
        Names of the variables this call set
    """
    project_dir = project_dir or Path.cwd()
    layers = list(user_env_paths if user_env_paths is not None else [user_env_path()])
    layers.extend(
        project_env_paths_override
        if project_env_paths_override is not None
        else project_env_paths(project_dir)
    )

    preexisting = set(os.environ)
    loaded: set[str] = set()
    for path in layers:
        for key, value in read_env_file(Path(path)).items():
            if key in preexisting:
                continue
            os.environ[key] = value
            loaded.add(key)

    if loaded:
        logger.debug(f"Loaded {len(loaded)} variables from .env files")
    return loaded
