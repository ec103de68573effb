"""
Configuration loader — reads upm.yml into an UpmConfig.

The file is optional: with no upm.yml anywhere above the working
directory, defaults apply. Environment overrides for the Python
interpreters are resolved here, once, and handed to backends as
plain config values.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from upm.core.errors import ConfigError
from upm.core.models.config import UpmConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "upm.yml"

# Environment variable → config field
ENV_OVERRIDES = {
    "UPM_PYTHON2": "python2",
    "UPM_PYTHON3": "python3",
}


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for upm.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to upm.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> UpmConfig:
    """Load and validate configuration.

    Args:
        path: Explicit path to upm.yml. If None, searches upward; a
            missing file means defaults.
        env: Environment to read overrides from (default: os.environ).

    Returns:
        Validated UpmConfig.

    Raises:
        ConfigError: If an explicit file is missing, or any file or
            override is invalid.
    """
    data: dict = {}

    if path is not None and not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    if path is None:
        path = find_config_file()

    if path is not None:
        data = _read_yaml(path)

    env = os.environ if env is None else env
    for var, field_name in ENV_OVERRIDES.items():
        value = env.get(var, "")
        if value:
            logger.debug("%s overrides %s=%s", var, field_name, value)
            data[field_name] = value

    try:
        return UpmConfig.model_validate(data)
    except ValidationError as e:
        source = path or "environment"
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e


def _read_yaml(path: Path) -> dict:
    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # The YAML may wrap everything under an "upm" key or be flat
    inner = data.get("upm", data) if "upm" in data else data
    if inner is None:
        return {}
    if not isinstance(inner, dict):
        raise ConfigError(f"Expected a mapping under 'upm' in {path}")
    return dict(inner)
