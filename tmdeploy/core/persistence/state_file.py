"""
State file persistence — atomic read/write for DeploymentState.

State is stored as JSON in .state/current.json next to tmdeploy.yml.
Writes go to a temp file that is then renamed over the target, so a
crash mid-write never leaves a truncated state file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from tmdeploy.core.models.state import DeploymentState

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"


def default_state_path(deploy_root: Path) -> Path:
    """Get the default state file path for a deployment."""
    return deploy_root / DEFAULT_STATE_DIR / DEFAULT_STATE_FILE


def load_state(path: Path) -> DeploymentState:
    """Load deployment state from a JSON file.

    A missing or unreadable file yields a fresh state: the state is only
    a record of past applies, never an input to what gets deployed.
    """
    if not path.is_file():
        logger.info("No state file at %s — starting fresh", path)
        return DeploymentState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        state = DeploymentState.model_validate(data)
        logger.debug("Loaded state from %s (updated_at=%s)", path, state.updated_at)
        return state
    except json.JSONDecodeError as e:
        logger.warning("Corrupt state file %s: %s — starting fresh", path, e)
    except (OSError, ValidationError) as e:
        logger.warning("Cannot load state from %s: %s — starting fresh", path, e)
    return DeploymentState()


def save_state(state: DeploymentState, path: Path) -> None:
    """Save deployment state to a JSON file (atomic write)."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except Exception as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save state to %s: %s", path, e)
        raise
    logger.debug("State saved to %s", path)
