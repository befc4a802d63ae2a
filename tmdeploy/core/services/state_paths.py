"""
State path provisioning — directories behind persistent volumes.

Each directory must exist, belong to its service identity and carry
restrictive permissions before the container that mounts it starts.
Provisioning is idempotent: on an existing directory it only corrects
ownership or mode drift and never removes anything.
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from tmdeploy.core.errors import FilesystemProvisionError
from tmdeploy.core.models.config import APPLICATION, DASHBOARD, DATABASE, StackConfig
from tmdeploy.core.models.identity import ServiceIdentity

logger = logging.getLogger(__name__)

DEFAULT_MODE = 0o700

# Import drop directory for the application (CSV imports), not mounted
IMPORT_DIR = "import"


@dataclass
class PathChange:
    """Observed drift of one state directory."""

    path: str
    owner: str
    mode: int
    drift: list[str] = field(default_factory=list)  # missing, owner, mode

    @property
    def changed(self) -> bool:
        return bool(self.drift)

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "owner": self.owner,
            "mode": oct(self.mode),
            "drift": list(self.drift),
        }


def inspect(path: Path | str, owner: ServiceIdentity, mode: int = DEFAULT_MODE) -> PathChange:
    """Report how *path* differs from the desired state, without touching it.

    Raises:
        FilesystemProvisionError: If *path* exists but is not a directory.
    """
    target = Path(path)
    change = PathChange(path=str(target), owner=owner.user_spec, mode=mode)

    try:
        st = target.stat()
    except FileNotFoundError:
        change.drift.append("missing")
        return change
    except OSError as e:
        raise FilesystemProvisionError(target, str(e)) from e

    if not stat.S_ISDIR(st.st_mode):
        raise FilesystemProvisionError(target, "exists and is not a directory")

    if (st.st_uid, st.st_gid) != (owner.uid, owner.gid):
        change.drift.append("owner")
    if stat.S_IMODE(st.st_mode) != mode:
        change.drift.append("mode")
    return change


def ensure(path: Path | str, owner: ServiceIdentity, mode: int = DEFAULT_MODE) -> PathChange:
    """Create *path* if absent and correct its ownership and mode.

    Returns:
        The drift that was found (and corrected).

    Raises:
        FilesystemProvisionError: If the directory cannot be created,
            chowned or chmodded (typically missing privileges).
    """
    change = inspect(path, owner, mode)
    if not change.changed:
        logger.debug("State path %s already as desired", change.path)
        return change

    target = Path(path)
    try:
        if "missing" in change.drift:
            target.mkdir(mode=mode, parents=True, exist_ok=True)
        if "missing" in change.drift or "owner" in change.drift:
            os.chown(target, owner.uid, owner.gid)
        # mkdir's mode is filtered by the umask, so always set it explicitly
        os.chmod(target, mode)
    except OSError as e:
        raise FilesystemProvisionError(target, str(e)) from e

    logger.info(
        "Provisioned %s (%s, %s), corrected: %s",
        target, owner.user_spec, oct(mode), ", ".join(change.drift),
    )
    return change


def stack_state_paths(
    config: StackConfig,
    identities: Mapping[str, ServiceIdentity],
) -> list[tuple[Path, ServiceIdentity]]:
    """Directories the stack needs, each paired with its owner."""
    return [
        (config.state_path(IMPORT_DIR), identities[APPLICATION]),
        (config.state_path(DATABASE), identities[DATABASE]),
        (config.state_path(DASHBOARD), identities[DASHBOARD]),
    ]
