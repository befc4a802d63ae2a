"""
Deploy use case — plan, apply and hand off the stack.

This is the top-level orchestrator. Every run recomputes the whole
deployment from configuration and the host seed:

    seed → secrets → env files → identities → state paths → manifest → hand-off

``plan`` builds everything in memory and reports drift against the
host without writing. ``apply`` writes only what drifted, records the
result in the state file and audit ledger, and optionally hands the
compose file to the container runtime. Any DeployError aborts before a
container is started.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Mapping

from tmdeploy.adapters.base import Adapter, ExecutionContext
from tmdeploy.adapters.containers.compose import runtime_adapter
from tmdeploy.core.config.loader import config_root, find_config_file, load_config
from tmdeploy.core.errors import DeployError
from tmdeploy.core.models.action import Action, Receipt
from tmdeploy.core.models.config import STACK_SERVICES, StackConfig
from tmdeploy.core.models.generated import GeneratedFile
from tmdeploy.core.models.identity import ServiceIdentity
from tmdeploy.core.models.manifest import EnvironmentFile, ServiceManifest
from tmdeploy.core.models.state import DeploymentState
from tmdeploy.core.observability.logging_config import register_secret
from tmdeploy.core.persistence.audit import AuditEntry, AuditWriter
from tmdeploy.core.persistence.state_file import default_state_path, load_state, save_state
from tmdeploy.core.services import manifest as manifest_builder
from tmdeploy.core.services import state_paths
from tmdeploy.core.services.env_files import (
    atomic_write,
    env_file_path,
    file_drift,
    fingerprint,
    materialize,
    render_env,
    stack_environments,
)
from tmdeploy.core.services.identity import (
    AccountChange,
    IdentityProvisioner,
    ensure_host_accounts,
    plan_host_accounts,
)
from tmdeploy.core.services.secrets import derive_stack_secrets, load_seed

logger = logging.getLogger(__name__)

# Drift kinds that block `runtime up`; owner drift alone does not
STRUCTURAL_DRIFT = frozenset({"missing", "content", "mode"})


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    ts = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{ts}-{short}"


# ── Plan ────────────────────────────────────────────────────────────


@dataclass
class Change:
    """One host artifact that differs from the desired state."""

    kind: str                 # account, directory, env_file, compose
    target: str
    drift: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "target": self.target, "drift": list(self.drift)}


@dataclass
class DeployPlan:
    """Everything one deployment needs, computed in memory.

    Holds secret material inside ``env_files``; ``to_dict`` exposes only
    paths and variable names.
    """

    config: StackConfig
    identities: dict[str, ServiceIdentity]
    env_files: dict[str, EnvironmentFile]
    env_contents: dict[str, str]
    manifests: list[ServiceManifest]
    compose: GeneratedFile
    state_paths: list[tuple[Path, ServiceIdentity]]
    accounts: list[AccountChange] = field(default_factory=list)
    changes: list[Change] = field(default_factory=list)

    @property
    def startup_order(self) -> list[str]:
        return [m.name for m in self.manifests]

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict:
        return {
            "project_name": self.config.project_name,
            "startup_order": self.startup_order,
            "identities": {
                service: {"name": i.name, "uid": i.uid, "gid": i.gid}
                for service, i in self.identities.items()
            },
            "env_files": {
                service: {"path": env.path, "variables": env.names}
                for service, env in self.env_files.items()
            },
            "state_paths": [
                {"path": str(path), "owner": owner.name}
                for path, owner in self.state_paths
            ],
            "compose_file": self.compose.path,
            "accounts": [a.to_dict() for a in self.accounts],
            "changes": [c.to_dict() for c in self.changes],
        }


def _detect_drift(plan: DeployPlan) -> list[Change]:
    changes: list[Change] = []

    for account in plan.accounts:
        if account.action == "create":
            changes.append(Change("account", f"{account.kind}:{account.name}", ["missing"]))

    for path, owner in plan.state_paths:
        found = state_paths.inspect(path, owner)
        if found.changed:
            changes.append(Change("directory", found.path, found.drift))

    for service, env_file in plan.env_files.items():
        drift = file_drift(
            Path(env_file.path), plan.env_contents[service], plan.identities[service],
        )
        if drift:
            changes.append(Change("env_file", env_file.path, drift))

    drift = file_drift(Path(plan.compose.path), plan.compose.content, mode=plan.compose.mode)
    if drift:
        changes.append(Change("compose", plan.compose.path, drift))

    return changes


def build_plan(config: StackConfig, seed: bytes, *, check_accounts: bool = True) -> DeployPlan:
    """Compute the full deployment and its drift against this host.

    Nothing is written.

    Args:
        config: Validated stack configuration.
        seed: Host seed bytes.
        check_accounts: Compare identities with the host user database.

    Raises:
        DeployError: Any precondition failure (missing seed or field,
            unsafe env value, invalid manifest, identity conflict).
    """
    secrets = derive_stack_secrets(seed)
    register_secret(config.mqtt.password)

    identities = IdentityProvisioner.from_config(config).provision_all(STACK_SERVICES)

    env_files: dict[str, EnvironmentFile] = {}
    env_contents: dict[str, str] = {}
    for service, variables in stack_environments(config, secrets).items():
        env_contents[service] = render_env(variables)
        env_files[service] = EnvironmentFile(
            service=service,
            path=str(env_file_path(config, service)),
            variables=variables,
        )

    manifests = manifest_builder.build(config, env_files, identities)
    compose = manifest_builder.render_compose(config, manifests)

    accounts: list[AccountChange] = []
    if check_accounts:
        accounts = plan_host_accounts(
            [identities[s] for s in STACK_SERVICES], config.group,
        )

    plan = DeployPlan(
        config=config,
        identities=identities,
        env_files=env_files,
        env_contents=env_contents,
        manifests=manifests,
        compose=compose,
        state_paths=state_paths.stack_state_paths(config, identities),
        accounts=accounts,
    )
    plan.changes = _detect_drift(plan)
    logger.info(
        "Planned %s: %d service(s), %d change(s)",
        config.project_name, len(manifests), len(plan.changes),
    )
    return plan


# ── Apply ───────────────────────────────────────────────────────────


def apply_plan(
    plan: DeployPlan,
    *,
    dry_run: bool = False,
    manage_accounts: bool = True,
) -> list[Change]:
    """Bring the host in line with *plan*, touching only drifted artifacts.

    Steps run strictly in order: accounts, env files, state directories,
    compose file. Nothing is chowned to a uid until its account has
    been reconciled. The first failure aborts the rest.

    Returns:
        The changes made (or that would be made, under *dry_run*).

    Raises:
        FilesystemProvisionError: A write, chown or chmod failed.
        IdentityConflictError: A host account has an unexpected id.
    """
    applied: list[Change] = []

    if manage_accounts:
        accounts = ensure_host_accounts(
            [plan.identities[s] for s in STACK_SERVICES],
            plan.config.group,
            dry_run=dry_run,
        )
        for account in accounts:
            if account.action == "create":
                applied.append(Change("account", f"{account.kind}:{account.name}", ["missing"]))

    for service, env_file in plan.env_files.items():
        target = Path(env_file.path)
        owner = plan.identities[service]
        drift = file_drift(target, plan.env_contents[service], owner)
        if not drift:
            continue
        if not dry_run:
            materialize(env_file.variables, target, owner, service=service)
        applied.append(Change("env_file", str(target), drift))

    for path, owner in plan.state_paths:
        if dry_run:
            found = state_paths.inspect(path, owner)
        else:
            found = state_paths.ensure(path, owner)
        if found.changed:
            applied.append(Change("directory", found.path, found.drift))

    compose_target = Path(plan.compose.path)
    drift = file_drift(compose_target, plan.compose.content, mode=plan.compose.mode)
    if drift:
        if not dry_run:
            atomic_write(compose_target, plan.compose.content, plan.compose.mode)
            logger.info("Wrote compose file %s", compose_target)
        applied.append(Change("compose", str(compose_target), drift))

    return applied


def handoff(
    config: StackConfig,
    adapter: Adapter,
    operation: str = "up",
    *,
    dry_run: bool = False,
    operation_id: str = "",
) -> Receipt:
    """Ask the container runtime to act on the stack's compose file."""
    action = Action(
        id=operation_id or generate_operation_id(),
        adapter=adapter.name,
        operation=operation,
    )
    context = ExecutionContext(
        action=action,
        project_name=config.project_name,
        compose_file=str(config.compose_path),
        dry_run=dry_run,
    )
    receipt = adapter.execute(context)
    if receipt.failed:
        logger.error("Runtime %s %s failed: %s", adapter.name, operation, receipt.error)
    else:
        logger.info("Runtime %s %s: %s", adapter.name, operation, receipt.status)
    return receipt


# ── Entry points ────────────────────────────────────────────────────


@dataclass
class DeployResult:
    """Result of a plan, apply or runtime run."""

    operation_id: str = ""
    plan: DeployPlan | None = None
    applied: list[Change] = field(default_factory=list)
    receipt: Receipt | None = None
    dry_run: bool = False
    deploy_root: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        result: dict = {"operation_id": self.operation_id}
        if self.error:
            result["error"] = self.error
        if self.plan:
            result["plan"] = self.plan.to_dict()
        if self.applied:
            result["applied"] = [c.to_dict() for c in self.applied]
        if self.receipt:
            result["receipt"] = self.receipt.model_dump(mode="json")
        result["dry_run"] = self.dry_run
        return result


def _load(config_path: Path | None) -> tuple[StackConfig, Path]:
    if config_path is None:
        config_path = find_config_file()
    config = load_config(config_path)
    assert config_path is not None
    return config, config_root(config_path)


def run_plan(
    config_path: Path | None = None,
    *,
    check_accounts: bool = True,
    environ: Mapping[str, str] | None = None,
) -> DeployResult:
    """Build the deployment and report drift. Writes nothing."""
    result = DeployResult(operation_id=generate_operation_id(), dry_run=True)
    try:
        config, root = _load(config_path)
        result.deploy_root = root
        seed = load_seed(Path(config.seed_file), environ)
        result.plan = build_plan(config, seed, check_accounts=check_accounts)
    except DeployError as e:
        result.error = str(e)
    return result


def run_apply(
    config_path: Path | None = None,
    *,
    dry_run: bool = False,
    manage_accounts: bool = True,
    up: bool = False,
    adapter: Adapter | None = None,
    environ: Mapping[str, str] | None = None,
) -> DeployResult:
    """Plan, apply drifted artifacts and optionally start the stack.

    Args:
        config_path: Explicit tmdeploy.yml; None searches upward.
        dry_run: Report what would change without writing.
        manage_accounts: Create missing host accounts (needs root).
        up: Hand the compose file to the runtime after applying.
        adapter: Runtime adapter; defaults to the configured engine.
        environ: Environment used for the seed lookup.
    """
    operation_id = generate_operation_id()
    result = DeployResult(operation_id=operation_id, dry_run=dry_run)
    started_at = datetime.now(UTC).isoformat()
    start = time.monotonic()

    try:
        config, root = _load(config_path)
    except DeployError as e:
        result.error = str(e)
        return result
    result.deploy_root = root

    try:
        seed = load_seed(Path(config.seed_file), environ)
        plan = build_plan(config, seed, check_accounts=manage_accounts)
        result.plan = plan
        result.applied = apply_plan(plan, dry_run=dry_run, manage_accounts=manage_accounts)
    except DeployError as e:
        logger.error("Apply aborted: %s", e)
        result.error = str(e)

    if result.ok and up:
        if adapter is None:
            adapter = runtime_adapter(config.runtime.engine)
        result.receipt = handoff(
            config, adapter, "up", dry_run=dry_run, operation_id=operation_id,
        )
        if result.receipt.failed:
            result.error = f"Runtime hand-off failed: {result.receipt.error}"

    duration_ms = int((time.monotonic() - start) * 1000)
    status = "dry-run" if dry_run and result.ok else ("ok" if result.ok else "failed")

    # ── Persist state ────────────────────────────────────────────
    if not dry_run:
        state_path = default_state_path(root)
        state = load_state(state_path)
        state.project_name = config.project_name
        if result.plan:
            state.services = result.plan.startup_order
            _record_artifacts(state, result.plan)
        state.last_apply.operation_id = operation_id
        state.last_apply.started_at = started_at
        state.last_apply.ended_at = datetime.now(UTC).isoformat()
        state.last_apply.status = status
        state.last_apply.changes_planned = len(result.plan.changes) if result.plan else 0
        state.last_apply.changes_applied = len(result.applied)
        state.last_apply.handed_off = bool(result.receipt and result.receipt.ok)
        try:
            save_state(state, state_path)
        except OSError as e:
            logger.error("Could not save deployment state: %s", e)

    # ── Write audit log ──────────────────────────────────────────
    AuditWriter(deploy_root=root).write(AuditEntry(
        operation_id=operation_id,
        operation_type="apply",
        project_name=config.project_name,
        services=result.plan.startup_order if result.plan else [],
        status=status,
        changes_planned=len(result.plan.changes) if result.plan else 0,
        changes_applied=len(result.applied),
        changed_targets=[c.target for c in result.applied],
        duration_ms=duration_ms,
        errors=[result.error] if result.error else [],
        context={"handed_off": bool(result.receipt and result.receipt.ok)},
    ))

    return result


def _record_artifacts(state: DeploymentState, plan: DeployPlan) -> None:
    for service, env_file in plan.env_files.items():
        state.record_artifact("env_file", env_file.path, fingerprint(plan.env_contents[service]))
    for path, owner in plan.state_paths:
        state.record_artifact(
            "directory", str(path), f"{owner.user_spec}/{oct(state_paths.DEFAULT_MODE)}",
        )
    state.record_artifact("compose", plan.compose.path, fingerprint(plan.compose.content))
    for account in plan.accounts:
        state.record_artifact("account", f"{account.kind}:{account.name}", str(account.id))


def _unapplied(plan: DeployPlan) -> list[Change]:
    """Changes that leave a container without its files or directories."""
    return [
        c for c in plan.changes
        if c.kind != "account" and STRUCTURAL_DRIFT & set(c.drift)
    ]


def run_runtime(
    operation: str,
    config_path: Path | None = None,
    *,
    dry_run: bool = False,
    adapter: Adapter | None = None,
    environ: Mapping[str, str] | None = None,
) -> DeployResult:
    """Run a runtime operation (up, down, ps) against the written compose file.

    ``up`` first rebuilds the plan from the current config and seed. It
    refuses to start anything while an env file, a state directory or
    the compose file is missing or out of date. Owner drift only warns.
    """
    operation_id = generate_operation_id()
    result = DeployResult(operation_id=operation_id, dry_run=dry_run)
    try:
        config, root = _load(config_path)
    except DeployError as e:
        result.error = str(e)
        return result
    result.deploy_root = root

    if operation == "up":
        try:
            seed = load_seed(Path(config.seed_file), environ)
            result.plan = build_plan(config, seed, check_accounts=False)
        except DeployError as e:
            result.error = str(e)
        else:
            pending = _unapplied(result.plan)
            if pending:
                targets = ", ".join(f"{c.target} ({', '.join(c.drift)})" for c in pending)
                result.error = f"Host is not provisioned, run 'tmdeploy apply' first: {targets}"
            for change in result.plan.changes:
                if "owner" in change.drift:
                    logger.warning("%s has the wrong owner", change.target)
        if result.error:
            AuditWriter(deploy_root=root).write(AuditEntry(
                operation_id=operation_id,
                operation_type="runtime-up",
                project_name=config.project_name,
                status="failed",
                errors=[result.error],
            ))
            return result

    if adapter is None:
        adapter = runtime_adapter(config.runtime.engine)
    result.receipt = handoff(
        config, adapter, operation, dry_run=dry_run, operation_id=operation_id,
    )
    if result.receipt.failed:
        result.error = result.receipt.error

    if operation != "ps":
        AuditWriter(deploy_root=root).write(AuditEntry(
            operation_id=operation_id,
            operation_type=f"runtime-{operation}",
            project_name=config.project_name,
            status="failed" if result.receipt.failed else result.receipt.status,
            duration_ms=result.receipt.duration_ms,
            errors=[result.error] if result.error else [],
        ))
    return result
