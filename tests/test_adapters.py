"""
Tests for runtime adapters — compose hand-off and the mock.
"""

import subprocess
from unittest.mock import patch

from tmdeploy.adapters import ComposeAdapter, ExecutionContext, MockAdapter, runtime_adapter
from tmdeploy.core.models.action import Action


def _context(operation: str = "up", **kwargs) -> ExecutionContext:
    return ExecutionContext(
        action=Action(id="op-1", adapter="podman", operation=operation),
        project_name="teslamate",
        compose_file="/run/tesla-mate/docker-compose.yml",
        **kwargs,
    )


def _which(available: set[str]):
    return lambda cmd: f"/usr/bin/{cmd}" if cmd in available else None


class TestComposeAdapter:
    """Tests for ComposeAdapter."""

    def test_up_command_docker(self):
        adapter = ComposeAdapter("docker")
        with patch("shutil.which", _which({"docker"})):
            cmd = adapter.build_command(_context("up"))
        assert cmd == [
            "docker", "compose", "-p", "teslamate",
            "-f", "/run/tesla-mate/docker-compose.yml", "up", "-d",
        ]

    def test_prefers_podman_compose(self):
        adapter = ComposeAdapter("podman")
        with patch("shutil.which", _which({"podman", "podman-compose"})):
            assert adapter.base_command() == ["podman-compose"]
        with patch("shutil.which", _which({"podman"})):
            assert adapter.base_command() == ["podman", "compose"]

    def test_config_is_quiet(self):
        with patch("shutil.which", _which({"docker"})):
            cmd = ComposeAdapter("docker").build_command(_context("config"))
        assert cmd[-2:] == ["config", "--quiet"]

    def test_unknown_operation(self):
        receipt = ComposeAdapter("docker").execute(_context("restart"))
        assert receipt.failed
        assert "Unknown operation" in receipt.error

    def test_dry_run_skips(self):
        with patch("shutil.which", _which({"docker"})), patch("subprocess.run") as mock_run:
            receipt = ComposeAdapter("docker").execute(_context("down", dry_run=True))
        mock_run.assert_not_called()
        assert receipt.status == "skipped"
        assert receipt.command[-1] == "down"

    def test_not_installed(self):
        with patch("shutil.which", _which(set())):
            receipt = ComposeAdapter("docker").execute(_context("up"))
        assert receipt.failed
        assert "not installed" in receipt.error

    def test_success(self):
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout="started\n", stderr="")
        with patch("shutil.which", _which({"docker"})), \
                patch("subprocess.run", return_value=done) as mock_run:
            receipt = ComposeAdapter("docker").execute(_context("up"))
        assert receipt.ok
        assert receipt.output == "started"
        assert mock_run.call_args.kwargs["timeout"] == 300

    def test_failure(self):
        failed = subprocess.CompletedProcess(args=[], returncode=1, stdout="", stderr="no such image")
        with patch("shutil.which", _which({"docker"})), patch("subprocess.run", return_value=failed):
            receipt = ComposeAdapter("docker").execute(_context("up"))
        assert receipt.failed
        assert receipt.error == "no such image"

    def test_timeout(self):
        with patch("shutil.which", _which({"docker"})), \
                patch("subprocess.run", side_effect=subprocess.TimeoutExpired("docker", 5)):
            receipt = ComposeAdapter("docker").execute(_context("up", timeout=5))
        assert receipt.failed
        assert "Timed out after 5s" in receipt.error

    def test_never_raises_on_oserror(self):
        with patch("shutil.which", _which({"docker"})), \
                patch("subprocess.run", side_effect=OSError("exec format error")):
            receipt = ComposeAdapter("docker").execute(_context("ps"))
        assert receipt.failed

    def test_runtime_adapter(self):
        assert runtime_adapter("docker").name == "docker"
        assert runtime_adapter("podman").name == "podman"


class TestMockAdapter:
    """Tests for the mock adapter."""

    def test_records_calls(self):
        adapter = MockAdapter()
        receipt = adapter.execute(_context("up"))
        assert receipt.ok
        assert adapter.operations == ["up"]
        assert receipt.metadata["mock"] is True

    def test_configured_failure(self):
        adapter = MockAdapter()
        adapter.set_failure("down", "nope")
        receipt = adapter.execute(_context("down"))
        assert receipt.failed
        assert receipt.error == "nope"

    def test_repr(self):
        assert repr(MockAdapter("fake")) == "<MockAdapter name='fake'>"
