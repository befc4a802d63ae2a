"""
tmdeploy — CLI entrypoint.

Usage:
    tmdeploy --help
    tmdeploy config check
    tmdeploy plan
    tmdeploy apply --up
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from tmdeploy import __version__
from tmdeploy.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="tmdeploy")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to tmdeploy.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """tmdeploy — deploy the TeslaMate stack on this host."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("TMD_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("TMD_LOG_FILE"),
        log_file_level=os.environ.get("TMD_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


@cli.group()
def config() -> None:
    """Stack configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate tmdeploy.yml."""
    from tmdeploy.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Project: {result.config.project_name}")
        click.echo(f"   State:   {result.config.state_directory}")
        click.echo(f"   Runtime: {result.config.runtime.engine}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


def _echo_changes(changes: list, empty: str) -> None:
    if not changes:
        click.secho(f"   ✓ {empty}", fg="green")
        return
    for change in changes:
        click.secho(f"   ~ {change.kind:<9}", fg="yellow", nl=False)
        click.echo(f" {change.target}  ({', '.join(change.drift)})")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--skip-accounts", is_flag=True, help="Don't compare host accounts.")
@click.pass_context
def plan(ctx: click.Context, as_json: bool, skip_accounts: bool) -> None:
    """Show what 'apply' would change. Writes nothing."""
    from tmdeploy.core.use_cases.deploy import run_plan

    result = run_plan(
        config_path=ctx.obj.get("config_path"),
        check_accounts=not skip_accounts,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    deploy_plan = result.plan
    assert deploy_plan is not None

    click.secho(f"\n📋 Plan: {deploy_plan.config.project_name}", fg="cyan", bold=True)
    click.echo(f"   Startup order: {' → '.join(deploy_plan.startup_order)}")
    if not ctx.obj.get("quiet"):
        for service, identity in deploy_plan.identities.items():
            click.echo(f"     • {service:<10} runs as {identity.name} ({identity.user_spec})")
    click.echo()
    _echo_changes(deploy_plan.changes, "Host is up to date")
    click.echo()


@cli.command()
@click.option("--dry-run", is_flag=True, help="Report changes without writing.")
@click.option("--skip-accounts", is_flag=True, help="Don't create host accounts.")
@click.option("--up", is_flag=True, help="Start the stack after applying.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def apply(
    ctx: click.Context,
    dry_run: bool,
    skip_accounts: bool,
    up: bool,
    as_json: bool,
) -> None:
    """Provision accounts, env files, state directories and the compose file.

    Examples:

        tmdeploy apply

        tmdeploy apply --dry-run

        tmdeploy apply --up
    """
    from tmdeploy.core.use_cases.deploy import run_apply

    result = run_apply(
        config_path=ctx.obj.get("config_path"),
        dry_run=dry_run,
        manage_accounts=not skip_accounts,
        up=up,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    mode_label = "[dry-run] " if dry_run else ""
    project = result.plan.config.project_name if result.plan else ""
    click.secho(f"\n⚡ {mode_label}apply {project}".rstrip(), fg="cyan", bold=True)
    _echo_changes(result.applied, "Nothing to change")

    if result.receipt is not None:
        click.echo()
        if result.receipt.ok:
            click.secho(f"   ✓ Handed off to {result.receipt.adapter}", fg="green")
        elif result.receipt.failed:
            click.secho(f"   ✗ {result.receipt.adapter} failed", fg="red")
        else:
            click.secho(f"   ⊘ {' '.join(result.receipt.command)}", fg="yellow")

    if result.error:
        click.echo()
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.echo()


@cli.command()
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write to this file instead of stdout.",
)
@click.pass_context
def manifest(ctx: click.Context, output: str | None) -> None:
    """Print the compose manifest for the stack."""
    from tmdeploy.core.use_cases.deploy import run_plan

    result = run_plan(config_path=ctx.obj.get("config_path"), check_accounts=False)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(1)

    assert result.plan is not None
    content = result.plan.compose.content

    if output:
        Path(output).write_text(content, encoding="utf-8")
        click.secho(f"✅ Wrote {output}", fg="green")
        return

    click.echo(content, nl=False)


# ── Register sub-command groups from tmdeploy/ui/cli/ ─────────────

from tmdeploy.ui.cli.runtime import runtime
from tmdeploy.ui.cli.seed import seed

cli.add_command(seed)
cli.add_command(runtime)


if __name__ == "__main__":
    cli()
