"""
Secret derivation — stable per-host secrets from a host seed.

Redeploying the same host with the same seed reproduces identical
database passwords and encryption keys, so nothing but the seed has to
be kept. The seed is passed explicitly to every call; there is no
module-level seed.

Key derivation: HKDF-SHA256 with the seed as input key material, a fixed
application salt and the secret's key name as ``info``. Different key
names therefore yield independent outputs for the same seed.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets as py_secrets
from pathlib import Path
from typing import Mapping

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from tmdeploy.core.errors import FilesystemProvisionError, MissingSeedError
from tmdeploy.core.models.secret import DerivedSecret
from tmdeploy.core.observability.logging_config import register_secret

logger = logging.getLogger(__name__)

# ── Derivation constants ─────────────────────────────────────────────
HKDF_SALT = b"tmdeploy/stable-secret/v1"
SECRET_BYTES = 32
SEED_BYTES = 32

SEED_ENV_VAR = "TMD_BUILD_SEED"

# Key names of the secrets the stack needs
DB_PASSWORD = "teslaMateDbPasswd"
ENCRYPTION_KEY = "teslaMateEncryptionKey"
STACK_SECRET_KEYS = (DB_PASSWORD, ENCRYPTION_KEY)


def derive(key: str, seed: bytes) -> str:
    """Derive the secret named *key* from *seed*.

    Same (key, seed) always yields the same string, across processes and
    hosts. The result is URL-safe base64 without padding (43 chars), so
    it is safe inside a double-quoted env file value.

    Raises:
        MissingSeedError: If the seed is empty.
        ValueError: If the key is empty.
    """
    if isinstance(seed, str):
        seed = seed.encode("utf-8")
    if not seed:
        raise MissingSeedError(
            "Host seed is empty; refusing to derive secrets from a default value."
        )
    if not key:
        raise ValueError("Secret key name must not be empty")

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=SECRET_BYTES,
        salt=HKDF_SALT,
        info=key.encode("utf-8"),
    )
    raw = hkdf.derive(seed)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def derive_secret(key: str, seed: bytes) -> DerivedSecret:
    """Derive *key* and register the value for log redaction."""
    value = derive(key, seed)
    register_secret(value)
    logger.debug("Derived secret %s", key)
    return DerivedSecret(key=key, value=value)


def derive_stack_secrets(seed: bytes) -> dict[str, DerivedSecret]:
    """Derive every secret the stack needs, keyed by secret name."""
    return {key: derive_secret(key, seed) for key in STACK_SECRET_KEYS}


# ── Host seed ────────────────────────────────────────────────────────


def load_seed(seed_file: Path | None, environ: Mapping[str, str] | None = None) -> bytes:
    """Read the host seed.

    ``TMD_BUILD_SEED`` in the environment wins over the seed file. An
    absent or blank seed is fatal: the deployment must not continue with
    an empty or default secret.

    Raises:
        MissingSeedError: If no non-empty seed is available.
    """
    env = os.environ if environ is None else environ

    from_env = env.get(SEED_ENV_VAR, "").strip()
    if from_env:
        logger.debug("Using host seed from %s", SEED_ENV_VAR)
        return from_env.encode("utf-8")

    if seed_file is None:
        raise MissingSeedError(
            f"No host seed configured: set {SEED_ENV_VAR} or configure seed_file."
        )

    try:
        content = seed_file.read_bytes().strip()
    except FileNotFoundError:
        raise MissingSeedError(
            f"Host seed not found at {seed_file}. "
            "Initialise it with 'tmdeploy seed init' before deploying."
        ) from None
    except OSError as e:
        raise MissingSeedError(f"Cannot read host seed {seed_file}: {e}") from e

    if not content:
        raise MissingSeedError(f"Host seed file {seed_file} is empty.")

    logger.debug("Using host seed from %s", seed_file)
    return content


def generate_seed(seed_file: Path) -> Path:
    """Create a fresh random host seed at *seed_file* (mode 0600).

    This is an explicit operator action. An existing seed is never
    overwritten, because doing so would rotate every derived secret.

    Raises:
        FilesystemProvisionError: If the seed exists or cannot be written.
    """
    try:
        seed_file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(seed_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        raise FilesystemProvisionError(
            seed_file, "a host seed already exists; refusing to overwrite it",
        ) from None
    except OSError as e:
        raise FilesystemProvisionError(seed_file, str(e)) from e

    with os.fdopen(fd, "w", encoding="ascii") as f:
        f.write(py_secrets.token_hex(SEED_BYTES) + "\n")

    logger.info("Generated new host seed at %s", seed_file)
    return seed_file
