"""
Tests for CLI commands — config check, plan, apply, manifest, seed, runtime.
"""

import json
from pathlib import Path
from unittest.mock import patch

import yaml
from click.testing import CliRunner

from tmdeploy.adapters.mock import MockAdapter
from tmdeploy.core.services.secrets import DB_PASSWORD, derive
from tmdeploy.main import cli


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "TeslaMate" in result.output
        for command in ("apply", "plan", "manifest", "seed", "runtime", "config"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestConfigCheck:
    """Tests for 'config check'."""

    def test_valid(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "config", "check"])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_json(self, config_file: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "config", "check", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True

    def test_invalid(self, tmp_path: Path):
        path = tmp_path / "tmdeploy.yml"
        path.write_text("port: 4000\n")
        result = CliRunner().invoke(cli, ["--config", str(path), "config", "check"])
        assert result.exit_code == 1
        assert "Configuration errors" in result.output


class TestPlanAndApply:
    """Tests for 'plan', 'apply' and 'manifest'."""

    def test_plan(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "plan", "--skip-accounts"], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0, result.output
        assert "postgres → teslamate → grafana" in result.output
        assert "missing" in result.output

    def test_plan_json_has_no_secrets(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "plan", "--skip-accounts", "--json"],
            env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0
        assert derive(DB_PASSWORD, b"S1") not in result.output
        assert json.loads(result.output)["plan"]["startup_order"][0] == "postgres"

    def test_plan_missing_seed(self, config_file: Path, tmp_path: Path):
        (tmp_path / "host-seed").unlink()
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "plan", "--skip-accounts"], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 1
        assert "seed" in result.output

    def test_apply(self, config_file: Path, tmp_path: Path, chown_log):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "apply", "--skip-accounts"], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0, result.output
        assert (tmp_path / "run" / "docker-compose.yml").is_file()
        assert (tmp_path / "state" / "postgres").is_dir()

    def test_apply_dry_run(self, config_file: Path, tmp_path: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "apply", "--dry-run", "--skip-accounts"],
            env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0
        assert "[dry-run]" in result.output
        assert not (tmp_path / "run").exists()

    def test_apply_up(self, config_file: Path, chown_log):
        adapter = MockAdapter("podman")
        with patch("tmdeploy.core.use_cases.deploy.runtime_adapter", return_value=adapter):
            result = CliRunner().invoke(
                cli, ["--config", str(config_file), "apply", "--skip-accounts", "--up"],
                env={"TMD_BUILD_SEED": ""},
            )
        assert result.exit_code == 0, result.output
        assert adapter.operations == ["up"]
        assert "Handed off to podman" in result.output

    def test_manifest(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "manifest"], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0
        doc = yaml.safe_load(result.output)
        assert list(doc["services"]) == ["postgres", "teslamate", "grafana"]
        assert derive(DB_PASSWORD, b"S1") not in result.output

    def test_manifest_output(self, config_file: Path, tmp_path: Path):
        out = tmp_path / "compose.yml"
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "manifest", "-o", str(out)], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0
        assert yaml.safe_load(out.read_text())["name"] == "teslamate"


class TestSeedCommands:
    """Tests for 'seed init' / 'seed status'."""

    def test_init_explicit_path(self, tmp_path: Path):
        target = tmp_path / "new-seed"
        runner = CliRunner()
        with runner.isolated_filesystem(temp_dir=tmp_path):
            result = runner.invoke(cli, ["seed", "init", "--path", str(target)])
        assert result.exit_code == 0, result.output
        assert target.is_file()
        assert target.read_text().strip() not in result.output

    def test_init_from_config_refuses_overwrite(self, config_file: Path, tmp_path: Path):
        result = CliRunner().invoke(cli, ["--config", str(config_file), "seed", "init"])
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert (tmp_path / "host-seed").read_text().strip() == "S1"

    def test_init_from_config_audited(self, config_file: Path, tmp_path: Path):
        (tmp_path / "host-seed").unlink()
        result = CliRunner().invoke(cli, ["--config", str(config_file), "seed", "init"])
        assert result.exit_code == 0
        ledger = (tmp_path / ".state" / "audit.ndjson").read_text()
        assert "seed-init" in ledger

    def test_status(self, config_file: Path):
        result = CliRunner().invoke(
            cli, ["--config", str(config_file), "seed", "status", "--json"], env={"TMD_BUILD_SEED": ""},
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["available"] is True
        assert data["source"].endswith("host-seed")


class TestRuntimeCommands:
    """Tests for 'runtime up|down|ps'."""

    def test_down(self, config_file: Path):
        adapter = MockAdapter("podman")
        with patch("tmdeploy.core.use_cases.deploy.runtime_adapter", return_value=adapter):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "runtime", "down"])
        assert result.exit_code == 0, result.output
        assert adapter.operations == ["down"]

    def test_up_requires_apply(self, config_file: Path):
        adapter = MockAdapter("podman")
        with patch("tmdeploy.core.use_cases.deploy.runtime_adapter", return_value=adapter):
            result = CliRunner().invoke(
                cli, ["--config", str(config_file), "runtime", "up"], env={"TMD_BUILD_SEED": ""},
            )
        assert result.exit_code == 1
        assert "tmdeploy apply" in result.output
        assert adapter.operations == []

    def test_ps_failure(self, config_file: Path):
        adapter = MockAdapter("podman")
        adapter.set_failure("ps", "no such project")
        with patch("tmdeploy.core.use_cases.deploy.runtime_adapter", return_value=adapter):
            result = CliRunner().invoke(cli, ["--config", str(config_file), "runtime", "ps"])
        assert result.exit_code == 1
        assert "no such project" in result.output
