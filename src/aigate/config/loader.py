"""
Configuration loader for aigate.

Loads and merges configuration from multiple sources:
1. Default values
2. Global config (~/.aigate/config.yaml, or $AIGATE_HOME/config.yaml)
3. Project config (./.aigate/config.yaml, searched upwards)
4. An explicit config file
5. Environment variables (AIGATE_<SECTION>__<KEY>)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from aigate.config.merger import merge_configs, set_nested_value
from aigate.config.schema import Config
from aigate.storage.paths import find_project_config, get_global_config_path

logger = logging.getLogger(__name__)

ENV_PREFIX = "AIGATE_"
ENV_SEPARATOR = "__"
_RESERVED_ENV = {"AIGATE_HOME"}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed configuration dictionary (empty for a missing or empty file).

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or is not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return content


def save_yaml_file(path: Path, config: dict[str, Any]) -> None:
    """
    Save a configuration dictionary to a YAML file.

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot write {path}: {e}") from e


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to the appropriate type.

    Returns:
        bool, None, int, float, list (comma-separated) or the raw string.
    """
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if lowered in ("null", "none", "~"):
        return None

    if re.fullmatch(r"-?\d+", value.strip()):
        return int(value)
    if re.fullmatch(r"-?\d+\.\d*|-?\d*\.\d+", value.strip()):
        return float(value)

    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]

    return value


def apply_env_overrides(
    config: dict[str, Any],
    environ: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    ``AIGATE_RETRY__MAX_ATTEMPTS=5`` sets ``retry.max_attempts``. A double
    underscore separates nesting levels so single underscores can appear
    in key names.

    Args:
        config: Configuration dictionary to modify.
        environ: Environment to read. Defaults to ``os.environ``.

    Returns:
        Configuration with environment overrides applied.
    """
    environ = os.environ if environ is None else environ

    for key, value in sorted(environ.items()):
        if not key.startswith(ENV_PREFIX) or key in _RESERVED_ENV:
            continue

        parts = [part.lower() for part in key[len(ENV_PREFIX) :].split(ENV_SEPARATOR)]
        if len(parts) < 2 or not all(parts):
            logger.debug(f"Ignoring environment variable {key}")
            continue

        parsed = _parse_env_value(value)
        if parsed is None:
            # ``null`` in the environment means "fall back to the default"
            continue
        config = set_nested_value(config, ".".join(parts), parsed)

    return config


def load_config(
    config_file: Path | str | None = None,
    project_path: Path | None = None,
    skip_global: bool = False,
    skip_project: bool = False,
    skip_env: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Args:
        config_file: Explicit config file merged after global and project files.
        project_path: Starting path to search for project config. Defaults to cwd.
        skip_global: Skip the global configuration file.
        skip_project: Skip loading project configuration.
        skip_env: Skip environment variable overrides.

    Returns:
        Merged and validated Config object.

    Raises:
        ConfigurationError: If any source is unreadable or the result is invalid.
    """
    layers: list[dict[str, Any]] = [Config().model_dump()]

    if not skip_global:
        global_path = get_global_config_path()
        if global_path.exists():
            layers.append(load_yaml_file(global_path))

    if not skip_project:
        project_config_path = find_project_config(project_path)
        if project_config_path is not None:
            layers.append(load_yaml_file(project_config_path))

    if config_file is not None:
        path = Path(config_file).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        layers.append(load_yaml_file(path))

    config_dict = merge_configs(*layers)

    if not skip_env:
        config_dict = apply_env_overrides(config_dict)

    try:
        return Config.model_validate(config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def get_config_sources(project_path: Path | None = None) -> dict[str, Path | None]:
    """
    Get paths to the file-based configuration sources.

    Returns:
        Dictionary mapping source names to paths (None if not found).
    """
    global_path = get_global_config_path()
    return {
        "global": global_path if global_path.exists() else None,
        "project": find_project_config(project_path),
    }
