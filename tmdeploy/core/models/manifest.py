"""
Manifest models — what the container runtime is asked to run.

A ServiceManifest is composed fresh from StackConfig on every build. It
references its environment file by path only: variable values never
appear in the manifest handed to the runtime.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from tmdeploy.core.models.identity import ServiceIdentity


class EnvironmentFile(BaseModel):
    """A flat ``NAME="VALUE"`` file consumed by one container."""

    service: str
    path: str
    variables: dict[str, str] = Field(default_factory=dict, repr=False)

    @property
    def names(self) -> list[str]:
        return sorted(self.variables)


class PortBinding(BaseModel):
    """A host port published to a container port."""

    host_port: int = Field(ge=1, le=65535)
    container_port: int = Field(ge=1, le=65535)

    @property
    def spec(self) -> str:
        return f"{self.host_port}:{self.container_port}"


class VolumeBinding(BaseModel):
    """A host directory mounted into a container.

    ``host_path`` must exist and be owned by ``owner`` before the
    container first starts.
    """

    host_path: str
    container_path: str
    owner: ServiceIdentity

    @property
    def spec(self) -> str:
        return f"{self.host_path}:{self.container_path}"


class HealthCheck(BaseModel):
    """Readiness probe run by the runtime on a fixed interval.

    Failures during ``start_period`` do not count; after ``retries``
    consecutive failures the service is marked unhealthy.
    """

    test: list[str]
    interval: str = "30s"
    timeout: str = "3s"
    retries: int = 5
    start_period: str = "20s"


class Dependency(BaseModel):
    """A startup-ordering edge: this service waits for ``service``."""

    service: str
    condition: Literal["service_started", "service_healthy"] = "service_started"

    @property
    def healthy(self) -> bool:
        return self.condition == "service_healthy"


class ServiceManifest(BaseModel):
    """One container in the stack."""

    name: str
    image: str
    ports: list[PortBinding] = Field(default_factory=list)
    environment_file: EnvironmentFile | None = None
    volumes: list[VolumeBinding] = Field(default_factory=list)
    depends_on: list[Dependency] = Field(default_factory=list)

    # Capabilities: everything dropped, then only cap_add granted back
    drop_all_capabilities: bool = True
    cap_add: list[str] = Field(default_factory=list)

    user: str = ""
    restart: str = "always"
    healthcheck: HealthCheck | None = None

    def depends_on_service(self, name: str) -> Dependency | None:
        for dep in self.depends_on:
            if dep.service == name:
                return dep
        return None

    def to_compose(self) -> dict[str, Any]:
        """Render this manifest as a compose service mapping."""
        spec: dict[str, Any] = {"image": self.image, "restart": self.restart}

        if self.user:
            spec["user"] = self.user
        if self.ports:
            spec["ports"] = [p.spec for p in self.ports]
        if self.environment_file is not None:
            spec["env_file"] = [self.environment_file.path]
        if self.volumes:
            spec["volumes"] = [v.spec for v in self.volumes]
        if self.drop_all_capabilities:
            spec["cap_drop"] = ["ALL"]
        if self.cap_add:
            spec["cap_add"] = list(self.cap_add)
        if self.depends_on:
            spec["depends_on"] = {d.service: {"condition": d.condition} for d in self.depends_on}
        if self.healthcheck is not None:
            spec["healthcheck"] = self.healthcheck.model_dump()

        return spec
