"""
Compose runtime adapter — hands the stack to podman or docker compose.

Uses the runtime's CLI, never its API. The runtime owns container
lifecycle from here on: it starts services in dependency order, runs
the readiness probe and restarts crashed containers.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time

from tmdeploy.adapters.base import Adapter, ExecutionContext
from tmdeploy.core.models.action import Receipt

logger = logging.getLogger(__name__)

VALID_OPERATIONS = ("up", "down", "ps", "config")


class ComposeAdapter(Adapter):
    """Compose operations against one compose file.

    Action operations:
        up      start the stack detached (``up -d``)
        down    stop and remove the stack's containers
        ps      list the stack's containers
        config  let the runtime parse and validate the compose file
    """

    def __init__(self, engine: str = "podman"):
        self._engine = engine

    @property
    def name(self) -> str:
        return self._engine

    def base_command(self) -> list[str]:
        """The compose entry point for this engine."""
        if self._engine == "podman" and shutil.which("podman-compose"):
            return ["podman-compose"]
        return [self._engine, "compose"]

    def is_available(self) -> bool:
        return shutil.which(self._engine) is not None or (
            self._engine == "podman" and shutil.which("podman-compose") is not None
        )

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.operation
        if operation not in VALID_OPERATIONS:
            return False, f"Unknown operation '{operation}'. Valid: {', '.join(VALID_OPERATIONS)}"
        if not context.compose_file:
            return False, "No compose file given"
        return True, ""

    def build_command(self, context: ExecutionContext) -> list[str]:
        cmd = [*self.base_command(), "-p", context.project_name, "-f", context.compose_file]
        operation = context.action.operation
        if operation == "up":
            cmd += ["up", "-d"]
        elif operation == "config":
            cmd += ["config", "--quiet"]
        else:
            cmd.append(operation)
        return cmd

    def execute(self, context: ExecutionContext) -> Receipt:
        valid, error = self.validate(context)
        if not valid:
            return Receipt.failure(adapter=self.name, action_id=context.action.id, error=error)

        cmd = self.build_command(context)

        if context.dry_run:
            logger.info("[dry-run] would run: %s", " ".join(cmd))
            return Receipt.skip(
                adapter=self.name,
                action_id=context.action.id,
                reason="dry run",
                command=cmd,
            )

        if not self.is_available():
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{self._engine} is not installed",
                command=cmd,
            )

        start = time.monotonic()
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=context.timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Timed out after {context.timeout}s",
                command=cmd,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"{self._engine} error: {e}",
                command=cmd,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=context.action.id,
                output=result.stdout.strip(),
                command=cmd,
                duration_ms=elapsed_ms,
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=context.action.id,
            error=result.stderr.strip() or f"exit code {result.returncode}",
            output=result.stdout.strip(),
            command=cmd,
            duration_ms=elapsed_ms,
        )


def runtime_adapter(engine: str) -> Adapter:
    """Adapter for the configured runtime engine."""
    return ComposeAdapter(engine)
