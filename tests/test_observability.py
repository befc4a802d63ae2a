"""
Tests for logging setup and secret redaction.
"""

import logging
from pathlib import Path

import pytest

from tmdeploy.core.observability.logging_config import (
    REDACTED,
    SecretRedactingFilter,
    _parse_level,
    register_secret,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_level(self):
        setup_logging(level="INFO")
        assert logging.getLogger().level == logging.INFO

    def test_file_handler(self, tmp_path: Path):
        log_file = tmp_path / "tmdeploy.log"
        setup_logging(level="WARNING", log_file=str(log_file), log_file_level="DEBUG")
        logging.getLogger("tmdeploy.test").debug("to the file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "to the file" in log_file.read_text()

    def test_file_is_redacted(self, tmp_path: Path):
        log_file = tmp_path / "tmdeploy.log"
        setup_logging(level="ERROR", log_file=str(log_file), log_file_level="INFO")
        register_secret("pa55word")
        logging.getLogger("tmdeploy.test").info("db password is %s", "pa55word")
        for handler in logging.getLogger().handlers:
            handler.flush()
        text = log_file.read_text()
        assert "pa55word" not in text
        assert REDACTED in text

    @pytest.mark.parametrize("name,expected", [
        ("debug", logging.DEBUG),
        ("ERROR", logging.ERROR),
        ("bogus", logging.WARNING),
        (None, logging.WARNING),
    ])
    def test_parse_level(self, name, expected):
        assert _parse_level(name) == expected


class TestSecretRedactingFilter:
    def _record(self, msg, args=None):
        return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)

    def test_passes_clean_records(self):
        register_secret("x-secret")
        record = self._record("nothing to hide")
        assert SecretRedactingFilter().filter(record)
        assert record.getMessage() == "nothing to hide"

    def test_masks_in_args(self):
        register_secret("x-secret")
        record = self._record("value=%s", ("x-secret",))
        SecretRedactingFilter().filter(record)
        assert record.getMessage() == f"value={REDACTED}"

    def test_empty_value_not_registered(self):
        register_secret("")
        record = self._record("a b")
        SecretRedactingFilter().filter(record)
        assert record.getMessage() == "a b"
