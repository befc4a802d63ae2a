"""
Configuration loader — reads tmdeploy.yml into a StackConfig.

This is the primary entry point for loading deployment configuration.
It reads YAML, validates against the Pydantic schema, and returns a
typed StackConfig. A missing required field is reported by name.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tmdeploy.core.errors import ConfigError, MissingConfigurationError
from tmdeploy.core.models.config import StackConfig

logger = logging.getLogger(__name__)

# Default config filename
STACK_CONFIG_FILE = "tmdeploy.yml"


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for tmdeploy.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to tmdeploy.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / STACK_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def parse_config(data: Any, source: str = "<config>") -> StackConfig:
    """Validate an already-parsed mapping into a StackConfig.

    Raises:
        MissingConfigurationError: A required field is absent (first one wins).
        ConfigError: Any other validation failure.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {source}, got {type(data).__name__}")

    # The YAML may wrap everything under a "stack" key or be flat
    stack_data = data["stack"] if isinstance(data.get("stack"), dict) else data

    try:
        return StackConfig.model_validate(stack_data)
    except ValidationError as e:
        for err in e.errors():
            if err.get("type") == "missing":
                field = ".".join(str(part) for part in err.get("loc", ()))
                raise MissingConfigurationError(
                    field, f"Missing required configuration field '{field}' in {source}",
                ) from e
        raise ConfigError(f"Invalid configuration in {source}: {e}") from e


def load_config(path: Path | None = None) -> StackConfig:
    """Load and validate the stack configuration.

    Args:
        path: Explicit path to tmdeploy.yml. If None, searches upward.

    Returns:
        Validated StackConfig.

    Raises:
        ConfigError: If the file is missing or invalid.
        MissingConfigurationError: If a required field is absent.
    """
    if path is None:
        path = find_config_file()

    if path is None:
        raise ConfigError(
            f"No {STACK_CONFIG_FILE} found. "
            "Create one next to your deployment, or specify --config."
        )

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading stack config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    config = parse_config(data, source=str(path))
    logger.info("Loaded stack '%s' (state under %s)", config.project_name, config.state_directory)
    return config


def config_root(config_path: Path) -> Path:
    """Get the deployment root directory from a config file path."""
    return config_path.parent.resolve()
