"""
Config check use case — validate tmdeploy.yml and report issues.

Schema errors come from the loader; the checks here catch what the
schema alone cannot (colliding ports, malformed image references,
services without an identity) plus host warnings such as a missing
seed or runtime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from tmdeploy.adapters.containers.compose import runtime_adapter
from tmdeploy.core.config.loader import find_config_file, load_config
from tmdeploy.core.errors import DeployError
from tmdeploy.core.models.config import STACK_SERVICES, StackConfig
from tmdeploy.core.services.manifest import is_valid_image_ref
from tmdeploy.core.services.secrets import SEED_ENV_VAR


@dataclass
class ConfigCheckResult:
    """Result of configuration validation."""

    valid: bool = False
    config: StackConfig | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "project_name": self.config.project_name if self.config else None,
            "engine": self.config.runtime.engine if self.config else None,
            "state_directory": self.config.state_directory if self.config else None,
        }


def check_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate the stack configuration and report issues.

    Args:
        config_path: Optional explicit path to tmdeploy.yml.
        environ: Environment consulted for the seed override.

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult()
    env = os.environ if environ is None else environ

    if config_path is None:
        config_path = find_config_file()
    result.config_path = config_path

    try:
        config = load_config(config_path)
    except DeployError as e:
        result.errors.append(str(e))
        return result
    result.config = config

    # Semantic checks
    if config.port == config.grafana_port:
        result.errors.append(
            f"port and grafana_port both bind host port {config.port}"
        )

    for service in STACK_SERVICES:
        image = config.images.for_service(service)
        if not is_valid_image_ref(image):
            result.errors.append(f"Invalid image reference for '{service}': {image!r}")
        elif image.endswith(":latest") or (":" not in image.rsplit("/", 1)[-1] and "@" not in image):
            result.warnings.append(f"Image for '{service}' is not pinned: {image}")

        if service not in config.identities:
            result.errors.append(f"No identity declared for service '{service}'")

    if Path(config.state_directory) == Path(config.runtime_directory):
        result.errors.append("state_directory and runtime_directory must differ")

    # Host checks
    if not env.get(SEED_ENV_VAR, "").strip() and not Path(config.seed_file).is_file():
        result.warnings.append(
            f"No host seed at {config.seed_file} and {SEED_ENV_VAR} is unset. "
            "Run 'tmdeploy seed init' before applying."
        )

    if not runtime_adapter(config.runtime.engine).is_available():
        result.warnings.append(f"Container runtime '{config.runtime.engine}' is not installed")

    result.valid = len(result.errors) == 0
    return result
