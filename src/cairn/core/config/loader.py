"""
Configuration loading for cairn.

Layers are merged lowest precedence first:
    built-in defaults < user config.json < project .cairn.json < CAIRN_* env vars

The merged dict is validated once into a CairnConfig and cached for the
rest of the process.
"""

import json
import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from .models import CairnConfig

logger = logging.getLogger(__name__)

# Config validated by the last load_config() call
_config_cache: CairnConfig | None = None

STRATEGIES = ("greedy", "balanced", "conservative")
ENFORCEMENT_MODES = ("soft", "hard")


def get_xdg_config_home() -> Path:
    """Base directory for user config ($XDG_CONFIG_HOME, else ~/.config)."""
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Location of the user-wide cairn/config.json."""
    return get_xdg_config_home() / "cairn" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Location of a project's .cairn.json.

    Args:
        cwd: Project root (the current directory if omitted)
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".cairn.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge ``override`` onto ``base`` without mutating either.

    Nested sections merge key by key; any other value in ``override``
    replaces the one in ``base``.

    Example:
        >>> base = {"budget": {"per_run_ceiling": "1.00", "enforcement_mode": "hard"}}
        >>> override = {"budget": {"enforcement_mode": "soft"}, "retry": {"max_retries": 5}}
        >>> deep_merge(base, override)
        {'budget': {'per_run_ceiling': '1.00', 'enforcement_mode': 'soft'},
         'retry': {'max_retries': 5}}
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
    Read one config layer.

    Returns:
        The JSON object in ``path``, or None when the file is missing,
        unreadable, malformed, or not an object
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        # A broken layer is skipped so the others still load
        logger.warning(f"Ignoring config at {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config at {path}: top level is not an object")
        return None
    return data


def _parse_bool(value: str) -> bool:
    return value.lower() not in ("false", "0", "", "no")


def _set(result: dict[str, Any], section: str, key: str, value: Any) -> None:
    if not isinstance(result.get(section), dict):
        result[section] = {}
    else:
        result[section] = dict(result[section])
    result[section][key] = value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.
    Invalid values are logged and ignored.

    Supported env vars:
        CAIRN_STRATEGY - overrides context.default_strategy
        CAIRN_RUN_CEILING - overrides budget.per_run_ceiling
        CAIRN_SESSION_CEILING - overrides budget.per_session_ceiling
        CAIRN_ENFORCEMENT - overrides budget.enforcement_mode
        CAIRN_PRICING_STRICT - overrides pricing.strict
        CAIRN_MAX_RETRIES - overrides retry.max_retries
        CAIRN_PROVIDER_TIMEOUT - overrides execution.provider_timeout_seconds

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if strategy := os.environ.get("CAIRN_STRATEGY"):
        if strategy.lower() in STRATEGIES:
            _set(result, "context", "default_strategy", strategy.lower())
        else:
            logger.warning(f"Invalid CAIRN_STRATEGY value '{strategy}', ignoring")

    for env_var, key in (
        ("CAIRN_RUN_CEILING", "per_run_ceiling"),
        ("CAIRN_SESSION_CEILING", "per_session_ceiling"),
    ):
        if raw := os.environ.get(env_var):
            try:
                ceiling = Decimal(raw)
            except InvalidOperation:
                logger.warning(f"Invalid {env_var} value '{raw}', ignoring")
                continue
            if not ceiling.is_finite() or ceiling < 0:
                logger.warning(f"{env_var} must be a non-negative number, got {raw}, ignoring")
                continue
            _set(result, "budget", key, str(ceiling))

    if mode := os.environ.get("CAIRN_ENFORCEMENT"):
        if mode.lower() in ENFORCEMENT_MODES:
            _set(result, "budget", "enforcement_mode", mode.lower())
        else:
            logger.warning(f"Invalid CAIRN_ENFORCEMENT value '{mode}', ignoring")

    if strict := os.environ.get("CAIRN_PRICING_STRICT"):
        _set(result, "pricing", "strict", _parse_bool(strict))

    if retries := os.environ.get("CAIRN_MAX_RETRIES"):
        try:
            max_retries = int(retries)
            if max_retries < 0:
                logger.warning(f"CAIRN_MAX_RETRIES must be >= 0, got {max_retries}, ignoring")
            else:
                _set(result, "retry", "max_retries", max_retries)
        except ValueError:
            logger.warning(f"Invalid CAIRN_MAX_RETRIES value '{retries}', ignoring")

    if timeout := os.environ.get("CAIRN_PROVIDER_TIMEOUT"):
        try:
            seconds = float(timeout)
            if seconds <= 0:
                logger.warning(f"CAIRN_PROVIDER_TIMEOUT must be > 0, got {seconds}, ignoring")
            else:
                _set(result, "execution", "provider_timeout_seconds", seconds)
        except ValueError:
            logger.warning(f"Invalid CAIRN_PROVIDER_TIMEOUT value '{timeout}', ignoring")

    return result


def resolve_provider_secrets(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Fill provider api keys from the environment variables they name.

    A provider entry with ``api_key_env`` and no ``api_key`` gets the value
    of that variable, so secrets can live in .env files instead of JSON.
    """
    providers = config_dict.get("providers")
    if not isinstance(providers, dict):
        return config_dict

    resolved: dict[str, Any] = {}
    for model_id, settings in providers.items():
        if (
            isinstance(settings, dict)
            and settings.get("api_key_env")
            and not settings.get("api_key")
        ):
            settings = dict(settings)
            value = os.environ.get(settings["api_key_env"])
            if value:
                settings["api_key"] = value
            else:
                logger.warning(
                    f"Provider {model_id}: {settings['api_key_env']} is not set in the environment"
                )
        resolved[model_id] = settings

    result = config_dict.copy()
    result["providers"] = resolved
    return result


def get_default_config() -> dict[str, Any]:
    """Built-in lowest layer; model defaults fill in everything else."""
    return {
        "context": {"default_strategy": "balanced", "headroom_fraction": 0.15},
        "budget": {"enforcement_mode": "hard", "warning_threshold": 0.8},
        "retry": {"max_retries": 3, "base_delay_seconds": 1.0, "multiplier": 2.0},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> CairnConfig:
    """
    Merge every config layer and validate the result.

    After the file and env layers are merged, providers that name an
    ``api_key_env`` get their key from the environment.

    Args:
        project_dir: Directory holding .cairn.json (the current directory if omitted)
        use_cache: Reuse the config from the previous call when there is one

    Raises:
        ValidationError: If the merged layers do not form a valid CairnConfig

    Example:
        >>> config = load_config()
        >>> config.context.default_strategy.value, config.retry.max_retries
        ('balanced', 3)
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()
    for path in (get_user_config_path(), get_project_config_path(project_dir)):
        if layer := load_json_file(path):
            merged = deep_merge(merged, layer)

    merged = resolve_provider_secrets(apply_env_overrides(merged))
    _config_cache = CairnConfig(**merged)
    logger.debug(f"Loaded config (project dir: {project_dir or Path.cwd()})")
    return _config_cache


def clear_cache() -> None:
    """Forget the cached config so the next load_config() rereads every layer."""
    global _config_cache
    _config_cache = None
