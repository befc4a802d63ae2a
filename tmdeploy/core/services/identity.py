"""
Identity provisioning — one fixed system account per service.

Identities come from a static, config-declared table (service → account
name + uid) plus one shared group. Nothing is auto-incremented, so the
same service always maps to the same uid on every redeploy and after a
host rebuild, and volume ownership stays valid.

Host reconciliation creates missing accounts as non-interactive system
users (no home, ``nologin`` shell, no password) and refuses to adopt an
existing account whose uid does not match the table.
"""

from __future__ import annotations

import grp
import logging
import pwd
import shutil
import subprocess
from dataclasses import dataclass
from typing import Iterable, Literal, Mapping

from tmdeploy.core.errors import (
    FilesystemProvisionError,
    IdentityConflictError,
    MissingConfigurationError,
)
from tmdeploy.core.models.config import GroupConfig, IdentityEntry, StackConfig
from tmdeploy.core.models.identity import ServiceIdentity

logger = logging.getLogger(__name__)

NOLOGIN_SHELL = "/usr/sbin/nologin"
NO_HOME = "/nonexistent"


class IdentityProvisioner:
    """Maps service names to their ServiceIdentity.

    ``provision`` is pure: it reads the table and never allocates, so
    calling it twice for the same service yields the same uid/gid.
    """

    def __init__(self, identities: Mapping[str, IdentityEntry], group: GroupConfig):
        self._table = dict(identities)
        self._group = group

    @classmethod
    def from_config(cls, config: StackConfig) -> IdentityProvisioner:
        return cls(config.identities, config.group)

    @property
    def group(self) -> GroupConfig:
        return self._group

    def provision(self, service: str) -> ServiceIdentity:
        """Return the identity declared for *service*.

        Raises:
            MissingConfigurationError: If the table has no entry for it.
        """
        entry = self._table.get(service)
        if entry is None:
            raise MissingConfigurationError(f"identities.{service}")
        return ServiceIdentity(
            name=entry.name,
            uid=entry.uid,
            gid=self._group.gid,
            service=service,
        )

    def provision_all(self, services: Iterable[str]) -> dict[str, ServiceIdentity]:
        return {service: self.provision(service) for service in services}


# ── Host accounts ───────────────────────────────────────────────────


@dataclass
class AccountChange:
    """A host account or group and what reconciliation does with it."""

    kind: Literal["group", "user"]
    name: str
    id: int
    action: Literal["create", "none"]

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "id": self.id, "action": self.action}


def _lookup_group(name: str) -> int | None:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return None


def _lookup_user(name: str) -> pwd.struct_passwd | None:
    try:
        return pwd.getpwnam(name)
    except KeyError:
        return None


def _group_name_for(gid: int) -> str | None:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None


def _user_name_for(uid: int) -> str | None:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return None


def plan_host_accounts(
    identities: Iterable[ServiceIdentity],
    group: GroupConfig,
) -> list[AccountChange]:
    """Compare the desired accounts with the host's user database.

    Missing accounts are also looked up by id, so a uid or gid already
    held by some other account is reported before anything is created.

    Raises:
        IdentityConflictError: An account or group exists with another
            id, or a wanted id belongs to a different name.
    """
    changes: list[AccountChange] = []

    existing_gid = _lookup_group(group.name)
    if existing_gid is None:
        holder = _group_name_for(group.gid)
        if holder is not None:
            raise IdentityConflictError(
                f"gid {group.gid} wanted for group '{group.name}' belongs to '{holder}'"
            )
        changes.append(AccountChange("group", group.name, group.gid, "create"))
    elif existing_gid != group.gid:
        raise IdentityConflictError(
            f"Group '{group.name}' exists with gid {existing_gid}, expected {group.gid}"
        )
    else:
        changes.append(AccountChange("group", group.name, group.gid, "none"))

    for identity in identities:
        entry = _lookup_user(identity.name)
        if entry is None:
            holder = _user_name_for(identity.uid)
            if holder is not None:
                raise IdentityConflictError(
                    f"uid {identity.uid} wanted for '{identity.name}' belongs to '{holder}'"
                )
            changes.append(AccountChange("user", identity.name, identity.uid, "create"))
            continue
        if entry.pw_uid != identity.uid:
            raise IdentityConflictError(
                f"User '{identity.name}' exists with uid {entry.pw_uid}, expected {identity.uid}"
            )
        if entry.pw_gid != identity.gid:
            logger.warning(
                "User %s has primary gid %d, expected %d",
                identity.name, entry.pw_gid, identity.gid,
            )
        changes.append(AccountChange("user", identity.name, identity.uid, "none"))

    return changes


def _account_command(change: AccountChange, group: GroupConfig) -> list[str]:
    if change.kind == "group":
        return ["groupadd", "--system", "--gid", str(change.id), change.name]
    return [
        "useradd",
        "--system",
        "--uid", str(change.id),
        "--gid", str(group.gid),
        "--no-create-home",
        "--home-dir", NO_HOME,
        "--shell", NOLOGIN_SHELL,
        change.name,
    ]


def ensure_host_accounts(
    identities: Iterable[ServiceIdentity],
    group: GroupConfig,
    *,
    dry_run: bool = False,
) -> list[AccountChange]:
    """Create any missing group or account.

    Returns:
        The reconciliation plan; entries with action ``create`` were
        created (or would be, under *dry_run*).

    Raises:
        IdentityConflictError: See :func:`plan_host_accounts`.
        FilesystemProvisionError: If groupadd/useradd is missing or fails.
    """
    changes = plan_host_accounts(identities, group)

    for change in changes:
        if change.action != "create":
            continue

        cmd = _account_command(change, group)
        if dry_run:
            logger.info("[dry-run] would run: %s", " ".join(cmd))
            continue

        if shutil.which(cmd[0]) is None:
            raise FilesystemProvisionError(change.name, f"{cmd[0]} not found on this host")

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
        if result.returncode != 0:
            raise FilesystemProvisionError(
                change.name,
                f"{cmd[0]} failed (exit {result.returncode}): {result.stderr.strip()}",
            )
        logger.info("Created %s %s (id %d)", change.kind, change.name, change.id)

    return changes
