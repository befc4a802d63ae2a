"""
DeploymentState — what the last apply left on the host.

Serialized to .state/current.json next to tmdeploy.yml. It is
disposable: delete it and the next apply recomputes everything from
configuration. Only fingerprints are stored, never secret values.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ArtifactState(BaseModel):
    """One provisioned artifact (env file, directory, account, compose file)."""

    kind: str
    target: str
    fingerprint: str = ""   # sha256 of rendered content, or owner/mode for directories
    applied_at: str = Field(default_factory=_now_iso)


class ApplyRecord(BaseModel):
    """Summary of the last apply."""

    operation_id: str = ""
    started_at: str = ""
    ended_at: str = ""
    status: str = ""  # ok, failed
    changes_planned: int = 0
    changes_applied: int = 0
    handed_off: bool = False


class DeploymentState(BaseModel):
    """Root state model — serialized to .state/current.json."""

    schema_version: int = 1
    project_name: str = ""

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    services: list[str] = Field(default_factory=list)
    artifacts: dict[str, ArtifactState] = Field(default_factory=dict)
    last_apply: ApplyRecord = Field(default_factory=ApplyRecord)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def record_artifact(self, kind: str, target: str, fingerprint: str = "") -> None:
        self.artifacts[f"{kind}:{target}"] = ArtifactState(
            kind=kind, target=target, fingerprint=fingerprint,
        )
