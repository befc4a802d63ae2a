"""
CLI commands for the host seed.

Thin wrappers over ``tmdeploy.core.services.secrets``. The seed value
itself is never printed.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from tmdeploy.core.errors import DeployError


def _seed_path(ctx: click.Context, path: str | None) -> tuple[Path, Path | None]:
    """Resolve the seed file and the deployment root (if a config exists)."""
    from tmdeploy.core.config.loader import config_root, find_config_file, load_config

    config_path: Path | None = ctx.obj.get("config_path") or find_config_file()
    root = config_root(config_path) if config_path else None

    if path:
        return Path(path), root
    if config_path is None:
        raise click.UsageError("No tmdeploy.yml found; pass --path explicitly.")
    return Path(load_config(config_path).seed_file), root


@click.group()
def seed() -> None:
    """Host seed — the one secret every derived secret comes from."""


@seed.command("init")
@click.option("--path", "path", default=None, help="Seed file (default: seed_file from config).")
@click.pass_context
def init(ctx: click.Context, path: str | None) -> None:
    """Generate a new random host seed. Never overwrites an existing one."""
    from tmdeploy.core.persistence.audit import AuditEntry, AuditWriter
    from tmdeploy.core.services.secrets import generate_seed
    from tmdeploy.core.use_cases.deploy import generate_operation_id

    try:
        seed_file, root = _seed_path(ctx, path)
        generate_seed(seed_file)
    except DeployError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if root is not None:
        AuditWriter(deploy_root=root).write(AuditEntry(
            operation_id=generate_operation_id(),
            operation_type="seed-init",
            status="ok",
            changed_targets=[str(seed_file)],
        ))

    click.secho(f"🔑 Host seed written to {seed_file}", fg="green")
    click.echo("   Back it up: every derived secret depends on it.")


@seed.command("status")
@click.option("--path", "path", default=None, help="Seed file (default: seed_file from config).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, path: str | None, as_json: bool) -> None:
    """Report where the seed comes from, without revealing it."""
    from tmdeploy.core.services.secrets import SEED_ENV_VAR, load_seed

    try:
        seed_file, _ = _seed_path(ctx, path)
    except DeployError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    source = SEED_ENV_VAR if os.environ.get(SEED_ENV_VAR, "").strip() else str(seed_file)
    try:
        load_seed(seed_file)
        error = None
    except DeployError as e:
        error = str(e)

    if as_json:
        click.echo(json.dumps({"available": error is None, "source": source, "error": error}, indent=2))
        sys.exit(0 if error is None else 1)

    if error:
        click.secho(f"✗ {error}", fg="red")
        sys.exit(1)
    click.secho(f"✓ Host seed available ({source})", fg="green")
