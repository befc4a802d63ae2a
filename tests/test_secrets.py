"""
Tests for secret derivation and the host seed.
"""

import logging
import os
import stat
from pathlib import Path

import pytest

from tmdeploy.core.errors import FilesystemProvisionError, MissingSeedError
from tmdeploy.core.observability.logging_config import REDACTED, SecretRedactingFilter
from tmdeploy.core.services.secrets import (
    DB_PASSWORD,
    ENCRYPTION_KEY,
    SEED_ENV_VAR,
    derive,
    derive_secret,
    derive_stack_secrets,
    generate_seed,
    load_seed,
)


class TestDerive:
    """Tests for derive()."""

    def test_deterministic(self):
        assert derive("k", b"S") == derive("k", b"S")

    def test_different_keys_differ(self):
        assert derive("k1", b"S") != derive("k2", b"S")

    def test_different_seeds_differ(self):
        assert derive("k", b"S1") != derive("k", b"S2")

    def test_unique_over_many_seeds(self):
        outputs = set()
        for _ in range(1000):
            seed = os.urandom(32)
            db_pass = derive(DB_PASSWORD, seed)
            key = derive(ENCRYPTION_KEY, seed)
            assert db_pass != key
            outputs.update((db_pass, key))
        assert len(outputs) == 2000

    def test_output_is_env_safe(self):
        value = derive(DB_PASSWORD, b"S1")
        assert len(value) == 43
        assert '"' not in value
        assert "\n" not in value
        assert "=" not in value

    def test_str_seed_matches_bytes(self):
        assert derive("k", "S1") == derive("k", b"S1")

    def test_empty_seed_raises(self):
        with pytest.raises(MissingSeedError):
            derive("k", b"")

    def test_empty_key_raises(self):
        with pytest.raises(ValueError):
            derive("", b"S1")


class TestDerivedSecret:
    """Tests for the DerivedSecret wrapper."""

    def test_repr_hides_value(self):
        secret = derive_secret(ENCRYPTION_KEY, b"S1")
        assert secret.reveal() not in repr(secret)
        assert secret.reveal() not in str(secret)
        assert secret.key == ENCRYPTION_KEY

    def test_stack_secrets(self):
        secrets = derive_stack_secrets(b"S1")
        assert set(secrets) == {DB_PASSWORD, ENCRYPTION_KEY}
        assert secrets[DB_PASSWORD].reveal() == derive(DB_PASSWORD, b"S1")
        assert secrets[DB_PASSWORD].reveal() != secrets[ENCRYPTION_KEY].reveal()

    def test_derived_value_is_redacted_in_logs(self):
        secret = derive_secret(DB_PASSWORD, b"S1")
        record = logging.LogRecord(
            "t", logging.INFO, __file__, 1, "password=%s", (secret.reveal(),), None,
        )
        SecretRedactingFilter().filter(record)
        assert record.getMessage() == f"password={REDACTED}"


class TestLoadSeed:
    """Tests for load_seed()."""

    def test_env_var_wins(self, tmp_path: Path):
        seed_file = tmp_path / "seed"
        seed_file.write_text("from-file")
        assert load_seed(seed_file, {SEED_ENV_VAR: "from-env"}) == b"from-env"

    def test_reads_file(self, tmp_path: Path):
        seed_file = tmp_path / "seed"
        seed_file.write_text("abc123\n")
        assert load_seed(seed_file, {}) == b"abc123"

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(MissingSeedError, match="seed init"):
            load_seed(tmp_path / "absent", {})

    def test_empty_file_raises(self, tmp_path: Path):
        seed_file = tmp_path / "seed"
        seed_file.write_text("  \n")
        with pytest.raises(MissingSeedError):
            load_seed(seed_file, {})

    def test_blank_env_var_falls_back_to_file(self, tmp_path: Path):
        seed_file = tmp_path / "seed"
        seed_file.write_text("file-seed")
        assert load_seed(seed_file, {SEED_ENV_VAR: "   "}) == b"file-seed"

    def test_no_source_raises(self):
        with pytest.raises(MissingSeedError):
            load_seed(None, {})


class TestGenerateSeed:
    """Tests for generate_seed()."""

    def test_creates_private_file(self, tmp_path: Path):
        path = generate_seed(tmp_path / "sub" / "seed")
        assert path.is_file()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert len(path.read_text().strip()) == 64

    def test_seed_is_loadable(self, tmp_path: Path):
        path = generate_seed(tmp_path / "seed")
        assert load_seed(path, {})

    def test_refuses_to_overwrite(self, tmp_path: Path):
        path = tmp_path / "seed"
        path.write_text("existing")
        with pytest.raises(FilesystemProvisionError):
            generate_seed(path)
        assert path.read_text() == "existing"
