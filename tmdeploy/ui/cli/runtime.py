"""
CLI commands for the container runtime.

Thin wrappers over ``tmdeploy.core.use_cases.deploy.run_runtime``. They
act on the compose file written by ``tmdeploy apply``; ``up`` refuses to
start the stack until apply has provisioned the host.
"""

from __future__ import annotations

import json
import sys

import click


@click.group()
def runtime() -> None:
    """Container runtime — start, stop and list the stack."""


def _run(ctx: click.Context, operation: str, dry_run: bool, as_json: bool) -> None:
    from tmdeploy.core.use_cases.deploy import run_runtime

    result = run_runtime(operation, config_path=ctx.obj.get("config_path"), dry_run=dry_run)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    receipt = result.receipt
    assert receipt is not None

    if receipt.status == "skipped":
        click.secho(f"⊘ [dry-run] {' '.join(receipt.command)}", fg="yellow")
        return

    if receipt.output:
        click.echo(receipt.output)
    if operation != "ps":
        timing = f" ({receipt.duration_ms}ms)" if receipt.duration_ms else ""
        click.secho(f"✅ {operation} done{timing}", fg="green")


@runtime.command()
@click.option("--dry-run", is_flag=True, help="Print the command without running it.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def up(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Start the stack (detached)."""
    _run(ctx, "up", dry_run, as_json)


@runtime.command()
@click.option("--dry-run", is_flag=True, help="Print the command without running it.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def down(ctx: click.Context, dry_run: bool, as_json: bool) -> None:
    """Stop and remove the stack's containers. State directories are kept."""
    _run(ctx, "down", dry_run, as_json)


@runtime.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def ps(ctx: click.Context, as_json: bool) -> None:
    """List the stack's containers."""
    _run(ctx, "ps", False, as_json)
