"""
Stack configuration — the operator-facing surface.

Loaded from tmdeploy.yml. This is the single source of truth for the
deployment: manifests, env files and state directories are recomputed
from it on every run and never stored as their own objects.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Logical service names, used as keys for identities, env files and manifests
DATABASE = "postgres"
APPLICATION = "teslamate"
DASHBOARD = "grafana"
STACK_SERVICES = (DATABASE, APPLICATION, DASHBOARD)

# Compose durations: one or more <digits><unit> parts, e.g. "30s" or "1m30s"
_DURATION_RE = re.compile(r"^(?:\d+(?:ms|us|ns|h|m|s))+$")


class ImageConfig(BaseModel):
    """Container image per service."""

    teslamate: str = "teslamate/teslamate:latest"
    postgres: str = "postgres:15"
    grafana: str = "teslamate/grafana:latest"

    def for_service(self, service: str) -> str:
        return getattr(self, service, "")


class MqttConfig(BaseModel):
    """External MQTT broker, passed verbatim into the application env file."""

    host: str
    port: int = Field(default=1883, ge=1, le=65535)
    user: str = "tesla-mate"
    password: str


class GroupConfig(BaseModel):
    """The group shared by every service account."""

    name: str = "tesla-mate"
    gid: int = Field(default=720, ge=1)


class IdentityEntry(BaseModel):
    """A fixed system account for one service."""

    name: str
    uid: int = Field(ge=1)


def _default_identities() -> dict[str, IdentityEntry]:
    return {
        APPLICATION: IdentityEntry(name="tesla-mate", uid=720),
        DATABASE: IdentityEntry(name="tesla-mate-postgres", uid=721),
        DASHBOARD: IdentityEntry(name="tesla-mate-grafana", uid=722),
    }


class HealthCheckConfig(BaseModel):
    """Readiness-probe parameters for the database.

    These are emitted into the manifest as-is; the runtime runs the probe.
    """

    interval: str = "30s"
    timeout: str = "3s"
    retries: int = Field(default=5, ge=1)
    start_period: str = "20s"

    @field_validator("interval", "timeout", "start_period")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        value = value.strip()
        if _DURATION_RE.match(value):
            return value
        raise ValueError(f"not a duration (expected e.g. '30s'): {value!r}")


class RuntimeConfig(BaseModel):
    """The external container runtime that receives the manifest."""

    engine: Literal["podman", "docker"] = "podman"
    compose_file: str = ""  # default: <runtime_directory>/docker-compose.yml


class StackConfig(BaseModel):
    """Root configuration — loaded from tmdeploy.yml."""

    project_name: str = "teslamate"

    images: ImageConfig = Field(default_factory=ImageConfig)
    mqtt: MqttConfig

    port: int = Field(ge=1, le=65535)
    grafana_port: int = Field(ge=1, le=65535)

    state_directory: str
    runtime_directory: str = "/run/tesla-mate"
    seed_file: str = "/var/lib/tmdeploy/host-seed"

    group: GroupConfig = Field(default_factory=GroupConfig)
    identities: dict[str, IdentityEntry] = Field(default_factory=_default_identities)
    healthcheck: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    @field_validator("state_directory", "runtime_directory")
    @classmethod
    def _absolute(cls, value: str) -> str:
        if not value or not Path(value).is_absolute():
            raise ValueError(f"must be an absolute path: {value!r}")
        return value.rstrip("/") or "/"

    @model_validator(mode="after")
    def _unique_identities(self) -> StackConfig:
        uids = [e.uid for e in self.identities.values()]
        dupes = sorted({u for u in uids if uids.count(u) > 1})
        if dupes:
            raise ValueError(f"duplicate uid(s) in identities: {dupes}")
        names = [e.name for e in self.identities.values()]
        name_dupes = sorted({n for n in names if names.count(n) > 1})
        if name_dupes:
            raise ValueError(f"duplicate account name(s) in identities: {name_dupes}")
        return self

    @property
    def compose_path(self) -> Path:
        if self.runtime.compose_file:
            return Path(self.runtime.compose_file)
        return Path(self.runtime_directory) / "docker-compose.yml"

    def state_path(self, service: str) -> Path:
        """State directory backing *service*'s persistent data."""
        return Path(self.state_directory) / service
