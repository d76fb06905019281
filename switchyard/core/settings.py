"""Configuration loading for Switchyard.

Builds an EnvironmentConfig from layered sources. The orchestration core
never reads files or the environment itself; the composition root calls
load_environment_config() and hands the result over.

Configuration hierarchy (lowest to highest priority):
1. Defaults (switchyard.core.constants)
2. Config file (JSON)
3. Environment variables (SWITCHYARD_*)

Config file lookup order:
1. Explicit path argument
2. SWITCHYARD_CONFIG environment variable
3. ./.switchyard.json

Usage:
    from switchyard.core.settings import load_environment_config, JsonConfigStore

    config = load_environment_config()
    store = JsonConfigStore(".switchyard.json")
    orchestrator = CallOrchestrator(config, catalog, config_store=store)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from dotenv import load_dotenv
from pydantic import ValidationError

from switchyard.config import EnvironmentConfig, _deep_merge
from switchyard.core.constants import get_env_bool, get_env_float, get_env_int, get_env_list
from switchyard.core.errors import InvalidConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SWITCHYARD_CONFIG"
DEFAULT_CONFIG_FILENAME = ".switchyard.json"

# (environment variable, dotted config path, parser)
_ENV_OVERRIDES = [
    ("SWITCHYARD_PRIMARY_PROVIDER", "primary_provider", str),
    ("SWITCHYARD_FALLBACK_PROVIDERS", "fallback_providers", list),
    ("SWITCHYARD_AUTO_FALLBACK", "auto_fallback_enabled", bool),
    ("SWITCHYARD_HEALTH_CHECK_INTERVAL", "health_check_interval_ms", int),
    ("SWITCHYARD_MAX_RESPONSE_TIME", "performance_thresholds.max_response_time_ms", int),
    ("SWITCHYARD_MIN_SUCCESS_RATE", "performance_thresholds.min_success_rate", float),
    ("SWITCHYARD_MAX_ERROR_RATE", "performance_thresholds.max_error_rate", float),
    ("SWITCHYARD_HEALTH_CHECK_TIMEOUT", "performance_thresholds.health_check_timeout_ms", int),
    ("SWITCHYARD_CIRCUIT_BREAKER_THRESHOLD", "circuit_breaker_config.failure_threshold", int),
    ("SWITCHYARD_CIRCUIT_BREAKER_RESET_TIMEOUT", "circuit_breaker_config.reset_timeout_ms", int),
    ("SWITCHYARD_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS", "circuit_breaker_config.half_open_max_calls", int),
    ("SWITCHYARD_MAX_RETRIES", "retry_config.max_retries", int),
    ("SWITCHYARD_RETRY_BASE_DELAY", "retry_config.base_delay_ms", int),
    ("SWITCHYARD_RETRY_MAX_DELAY", "retry_config.max_delay_ms", int),
    ("SWITCHYARD_UNHEALTHY_PROBE_THRESHOLD", "unhealthy_probe_threshold", int),
    ("SWITCHYARD_SELECTION_STRATEGY", "selection_strategy", str),
]


class ConfigStore(Protocol):
    """Load/save hooks for persisting an EnvironmentConfig."""

    def load(self) -> EnvironmentConfig: ...

    def save(self, config: EnvironmentConfig) -> None: ...


class JsonConfigStore:
    """Persist EnvironmentConfig as a JSON file.

    Missing keys fall back to defaults on load. Saves are atomic
    (temp file + os.replace).
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> EnvironmentConfig:
        data = _read_config_file(self.path)
        try:
            return EnvironmentConfig.model_validate(data)
        except ValidationError as e:
            raise InvalidConfigError(str(self.path), "<file>", _format_validation_error(e)) from e

    def save(self, config: EnvironmentConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(mode="json"), f, indent=2)
            os.replace(temp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save configuration to {self.path}: {e}")
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise
        logger.info(f"Configuration saved to {self.path}")


def find_config_file(config_path: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Resolve the config file to read, or None when none exists."""
    if config_path is not None:
        return Path(config_path)

    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)

    default = Path(DEFAULT_CONFIG_FILENAME)
    if default.exists():
        return default
    return None


def _read_config_file(path: Optional[Path]) -> dict[str, Any]:
    """Read a JSON config file. Missing or malformed files yield {}."""
    if path is None or not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}; using defaults")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {path}: top-level value must be an object")
        return {}
    return data


def environment_overrides() -> dict[str, Any]:
    """Collect SWITCHYARD_* overrides as a nested dict.

    Raises:
        InvalidConfigError: If a numeric variable cannot be parsed
    """
    overrides: dict[str, Any] = {}
    for env_var, path, type_ in _ENV_OVERRIDES:
        if type_ is int:
            value = get_env_int(env_var)
        elif type_ is float:
            value = get_env_float(env_var)
        elif type_ is bool:
            value = get_env_bool(env_var)
        elif type_ is list:
            value = get_env_list(env_var)
        else:
            raw = os.getenv(env_var)
            value = raw.strip() if raw and raw.strip() else None

        if value is not None:
            _set_nested(overrides, path, value)
    return overrides


def load_environment_config(
    config_path: Optional[Union[str, Path]] = None,
    load_env_file: bool = True,
) -> EnvironmentConfig:
    """Load configuration from all sources.

    Args:
        config_path: Explicit path to a JSON config file
        load_env_file: Load a .env file into the environment first

    Returns:
        Fully-populated EnvironmentConfig

    Raises:
        InvalidConfigError: If an override or the merged result is invalid
    """
    if load_env_file:
        load_dotenv()

    path = find_config_file(config_path)
    data = _read_config_file(path)
    if data:
        logger.debug(f"Loaded configuration file {path}")

    _deep_merge(data, environment_overrides())

    try:
        return EnvironmentConfig.model_validate(data)
    except ValidationError as e:
        raise InvalidConfigError(str(path) if path else "environment", "<merged>", _format_validation_error(e)) from e


def _set_nested(data: dict[str, Any], path: str, value: Any) -> None:
    """Set a nested value using dot notation."""
    parts = path.split(".")
    container = data
    for part in parts[:-1]:
        container = container.setdefault(part, {})
    container[parts[-1]] = value


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in error.errors()
    )
