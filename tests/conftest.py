"""
Shared test fixtures and configuration.
"""

import os
from pathlib import Path

import pytest
import yaml

from tmdeploy.core.config.loader import parse_config
from tmdeploy.core.models.config import StackConfig
from tmdeploy.core.models.identity import ServiceIdentity
from tmdeploy.core.observability.logging_config import clear_secrets

SEED = b"S1"


def stack_data(tmp_path: Path, **overrides) -> dict:
    """A complete tmdeploy.yml mapping rooted under *tmp_path*."""
    data = {
        "project_name": "teslamate",
        "mqtt": {"host": "broker.local", "port": 1883, "user": "u", "password": "p"},
        "port": 4000,
        "grafana_port": 3000,
        "state_directory": str(tmp_path / "state"),
        "runtime_directory": str(tmp_path / "run"),
        "seed_file": str(tmp_path / "host-seed"),
    }
    data.update(overrides)
    return data


@pytest.fixture(autouse=True)
def _forget_secrets():
    yield
    clear_secrets()


@pytest.fixture
def make_stack(tmp_path: Path):
    """Factory for tmdeploy.yml mappings with field overrides."""

    def _make(**overrides) -> dict:
        return stack_data(tmp_path, **overrides)

    return _make


@pytest.fixture
def stack_config(tmp_path: Path) -> StackConfig:
    """A valid StackConfig whose paths live under tmp_path."""
    return parse_config(stack_data(tmp_path))


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A tmdeploy.yml on disk, plus a host seed next to it."""
    path = tmp_path / "tmdeploy.yml"
    path.write_text(yaml.safe_dump(stack_data(tmp_path)))
    (tmp_path / "host-seed").write_bytes(SEED + b"\n")
    return path


@pytest.fixture
def me() -> ServiceIdentity:
    """An identity for the user running the tests, so chown succeeds."""
    return ServiceIdentity(name="tester", uid=os.getuid(), gid=os.getgid(), service="teslamate")


@pytest.fixture
def chown_log(monkeypatch) -> list:
    """Record chown calls instead of performing them (tests are not root)."""
    calls: list = []

    def fake_chown(path, uid, gid):
        calls.append((str(path), uid, gid))

    monkeypatch.setattr(os, "chown", fake_chown)
    return calls
