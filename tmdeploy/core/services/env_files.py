"""
Env file materialization — one ``NAME="VALUE"`` file per service.

Secrets reach containers only through these files: never through a
process argument list and never through the compose manifest, which
references each file by path.

Files are written atomically (temp file in the same directory, then
``os.replace``) so a starting container never sees a half-written
file, and they are mode 0400 owned by the service's identity.

Values are wrapped in double quotes without escaping. Compose reads
these files with dotenv rules, where a backslash escapes and ``$``
interpolates inside double quotes. A value the format cannot carry
verbatim (quote, backslash, dollar sign, newline or NUL) is rejected up
front instead of producing a malformed or silently rewritten file.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import stat
import tempfile
from pathlib import Path
from typing import Mapping

from tmdeploy.core.errors import EnvValueError, FilesystemProvisionError
from tmdeploy.core.models.config import APPLICATION, DASHBOARD, DATABASE, StackConfig
from tmdeploy.core.models.identity import ServiceIdentity
from tmdeploy.core.models.manifest import EnvironmentFile
from tmdeploy.core.models.secret import DerivedSecret
from tmdeploy.core.services.secrets import DB_PASSWORD, ENCRYPTION_KEY

logger = logging.getLogger(__name__)

ENV_FILE_MODE = 0o400

ENV_FILE_NAMES = {
    APPLICATION: "tesla-mate.env",
    DATABASE: "postgres.env",
    DASHBOARD: "grafana.env",
}

# Database coordinates shared by the application and the dashboard
DB_USER = "teslamate"
DB_NAME = "teslamate"
DB_HOST = DATABASE

_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FORBIDDEN_CHARS = {
    '"': "value contains a double quote",
    "\n": "value contains a newline",
    "\r": "value contains a carriage return",
    "\x00": "value contains a NUL byte",
    "\\": "value contains a backslash",
    "$": "value contains a dollar sign",
}


# ── Rendering ───────────────────────────────────────────────────────


def _check_variable(name: str, value: str) -> None:
    if not _NAME_RE.match(name):
        raise EnvValueError(name, "not a valid variable name")
    for char, reason in _FORBIDDEN_CHARS.items():
        if char in value:
            raise EnvValueError(name, reason)


def render_env(variables: Mapping[str, object]) -> str:
    """Render *variables* as ``NAME="VALUE"`` lines, sorted by name.

    Raises:
        EnvValueError: If a name is invalid or a value cannot be quoted.
    """
    lines: list[str] = []
    for name in sorted(variables):
        value = str(variables[name])
        _check_variable(name, value)
        lines.append(f'{name}="{value}"')
    return "\n".join(lines) + "\n" if lines else ""


def parse_env(text: str) -> dict[str, str]:
    """Parse env file text back into a mapping.

    Blank lines and ``#`` comments are skipped; one level of surrounding
    double quotes is removed.
    """
    result: dict[str, str] = {}
    for line_num, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        name, sep, value = line.partition("=")
        if not sep:
            raise ValueError(f"line {line_num}: expected NAME=VALUE")
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        result[name.strip()] = value
    return result


def parse_env_file(path: Path) -> dict[str, str]:
    """Read an env file written by :func:`materialize`."""
    return parse_env(path.read_text(encoding="utf-8"))


def fingerprint(content: str) -> str:
    """sha256 of rendered content, used to detect drift without storing values."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


# ── Writing ─────────────────────────────────────────────────────────


def atomic_write(
    target: Path,
    content: str,
    mode: int,
    owner: ServiceIdentity | None = None,
) -> None:
    """Replace *target* with *content* in one rename.

    The temp file gets its owner and mode before the rename, so the
    final path never exists with looser permissions.

    Raises:
        FilesystemProvisionError: On any filesystem failure.
    """
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
        )
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            if owner is not None:
                os.chown(tmp, owner.uid, owner.gid)
            os.chmod(tmp, mode)
            os.replace(tmp, target)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        raise FilesystemProvisionError(target, str(e)) from e


def materialize(
    variables: Mapping[str, object],
    target_path: Path | str,
    owner: ServiceIdentity | None = None,
    *,
    service: str = "",
) -> EnvironmentFile:
    """Write *variables* to *target_path* atomically.

    Args:
        variables: Variable names to values.
        target_path: Final env file location.
        owner: Identity that owns the file; None keeps the deploying
            process as owner.
        service: Name of the service the file belongs to.

    Raises:
        EnvValueError: Before anything is written, if a variable is unsafe.
        FilesystemProvisionError: If the file cannot be written or chowned.
    """
    content = render_env(variables)
    target = Path(target_path)
    atomic_write(target, content, ENV_FILE_MODE, owner)

    logger.info("Wrote env file %s (%d variables)", target, len(variables))
    return EnvironmentFile(
        service=service,
        path=str(target),
        variables={name: str(value) for name, value in variables.items()},
    )


def file_drift(
    target: Path,
    content: str,
    owner: ServiceIdentity | None = None,
    mode: int = ENV_FILE_MODE,
) -> list[str]:
    """Describe how the file at *target* differs from the desired one.

    Returns:
        Drift reasons (``missing``, ``content``, ``mode``, ``owner``);
        empty when the file is already as desired.
    """
    try:
        st = target.stat()
    except FileNotFoundError:
        return ["missing"]

    reasons: list[str] = []
    try:
        if fingerprint(target.read_text(encoding="utf-8")) != fingerprint(content):
            reasons.append("content")
    except OSError:
        reasons.append("content")
    if stat.S_IMODE(st.st_mode) != mode:
        reasons.append("mode")
    if owner is not None and (st.st_uid, st.st_gid) != (owner.uid, owner.gid):
        reasons.append("owner")
    return reasons


# ── Stack variable sets ─────────────────────────────────────────────


def env_file_path(config: StackConfig, service: str) -> Path:
    """Fixed, predictable env file location for *service*."""
    return Path(config.runtime_directory) / ENV_FILE_NAMES[service]


def stack_environments(
    config: StackConfig,
    secrets: Mapping[str, DerivedSecret],
) -> dict[str, dict[str, str]]:
    """Build the variables each stack service receives.

    Raises:
        KeyError: If a required derived secret is missing from *secrets*.
    """
    db_pass = secrets[DB_PASSWORD].reveal()
    encryption_key = secrets[ENCRYPTION_KEY].reveal()

    return {
        APPLICATION: {
            "ENCRYPTION_KEY": encryption_key,
            "DATABASE_USER": DB_USER,
            "DATABASE_PASS": db_pass,
            "DATABASE_HOST": DB_HOST,
            "DATABASE_NAME": DB_NAME,
            "MQTT_HOST": config.mqtt.host,
            "MQTT_PORT": str(config.mqtt.port),
            "MQTT_USERNAME": config.mqtt.user,
            "MQTT_PASSWORD": config.mqtt.password,
        },
        DATABASE: {
            "POSTGRES_USER": DB_USER,
            "POSTGRES_PASSWORD": db_pass,
            "POSTGRES_DB": DB_NAME,
        },
        DASHBOARD: {
            "DATABASE_USER": DB_USER,
            "DATABASE_PASS": db_pass,
            "DATABASE_NAME": DB_NAME,
            "DATABASE_HOST": DB_HOST,
        },
    }
