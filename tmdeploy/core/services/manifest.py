"""
Service manifest builder — configuration in, validated manifests out.

Composition rules for the stack:

    postgres   persistent data volume, credentials env file, pg_isready probe
    teslamate  waits for postgres to be *healthy*, publishes its web port
    grafana    waits for teslamate, publishes its port, persistent state volume

Every manifest runs as its own service identity with all capabilities
dropped. Validation (image references, required secrets, host-port
collisions, dependency cycles) happens here, before anything is handed
to the runtime: a stack either builds completely or not at all.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

import yaml

from tmdeploy.core.errors import (
    ConfigError,
    ImageReferenceError,
    MissingConfigurationError,
    PortCollisionError,
)
from tmdeploy.core.models.config import APPLICATION, DASHBOARD, DATABASE, StackConfig
from tmdeploy.core.models.generated import GeneratedFile
from tmdeploy.core.models.identity import ServiceIdentity
from tmdeploy.core.models.manifest import (
    Dependency,
    EnvironmentFile,
    HealthCheck,
    PortBinding,
    ServiceManifest,
    VolumeBinding,
)
from tmdeploy.core.services.dag import topological_order
from tmdeploy.core.services.env_files import DB_NAME, DB_USER

logger = logging.getLogger(__name__)

# ── Container-side constants ────────────────────────────────────────
APP_CONTAINER_PORT = 4000
DASHBOARD_CONTAINER_PORT = 3000
POSTGRES_DATA_DIR = "/var/lib/postgresql/data"
GRAFANA_DATA_DIR = "/var/lib/grafana"

COMPOSE_MODE = 0o640
COMPOSE_HEADER = "# Generated by tmdeploy. Do not edit; rerun 'tmdeploy apply'.\n"

# Variables that must carry non-empty secret material per service
REQUIRED_VARIABLES: dict[str, tuple[str, ...]] = {
    DATABASE: ("POSTGRES_PASSWORD",),
    APPLICATION: ("ENCRYPTION_KEY", "DATABASE_PASS"),
    DASHBOARD: ("DATABASE_PASS",),
}

# Image reference grammar: [domain[:port]/]path[:tag][@digest]
_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_LABEL = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
_DOMAIN = rf"(?:{_LABEL}(?:\.{_LABEL})*(?::[0-9]+)?/)?"
_TAG = r"(?::[\w][\w.-]{0,127})?"
_DIGEST = r"(?:@[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,})?"
IMAGE_REF_RE = re.compile(rf"^{_DOMAIN}{_COMPONENT}(?:/{_COMPONENT})*{_TAG}{_DIGEST}$")


def is_valid_image_ref(image: str) -> bool:
    return bool(image) and IMAGE_REF_RE.match(image) is not None


# ── Composition ─────────────────────────────────────────────────────


def plan_services(
    config: StackConfig,
    env_files: Mapping[str, EnvironmentFile],
    identities: Mapping[str, ServiceIdentity],
) -> list[ServiceManifest]:
    """Compose the stack's manifests without validating them.

    Raises:
        MissingConfigurationError: If an env file or identity is missing.
    """
    for service in (DATABASE, APPLICATION, DASHBOARD):
        if service not in env_files:
            raise MissingConfigurationError(f"{service}.environment_file")
        if service not in identities:
            raise MissingConfigurationError(f"identities.{service}")

    db = identities[DATABASE]
    app = identities[APPLICATION]
    dash = identities[DASHBOARD]
    hc = config.healthcheck

    postgres = ServiceManifest(
        name=DATABASE,
        image=config.images.postgres,
        environment_file=env_files[DATABASE],
        volumes=[
            VolumeBinding(
                host_path=str(config.state_path(DATABASE)),
                container_path=POSTGRES_DATA_DIR,
                owner=db,
            ),
        ],
        user=db.user_spec,
        healthcheck=HealthCheck(
            test=["CMD", "pg_isready", "-U", DB_USER, "-d", DB_NAME],
            interval=hc.interval,
            timeout=hc.timeout,
            retries=hc.retries,
            start_period=hc.start_period,
        ),
    )

    teslamate = ServiceManifest(
        name=APPLICATION,
        image=config.images.teslamate,
        ports=[PortBinding(host_port=config.port, container_port=APP_CONTAINER_PORT)],
        environment_file=env_files[APPLICATION],
        user=app.user_spec,
        depends_on=[Dependency(service=DATABASE, condition="service_healthy")],
    )

    grafana = ServiceManifest(
        name=DASHBOARD,
        image=config.images.grafana,
        ports=[PortBinding(host_port=config.grafana_port, container_port=DASHBOARD_CONTAINER_PORT)],
        environment_file=env_files[DASHBOARD],
        volumes=[
            VolumeBinding(
                host_path=str(config.state_path(DASHBOARD)),
                container_path=GRAFANA_DATA_DIR,
                owner=dash,
            ),
        ],
        user=dash.user_spec,
        depends_on=[Dependency(service=APPLICATION)],
    )

    return [postgres, teslamate, grafana]


def _check_required_variables(manifest: ServiceManifest) -> None:
    env = manifest.environment_file
    for name in REQUIRED_VARIABLES.get(manifest.name, ()):
        if env is None or not env.variables.get(name):
            raise MissingConfigurationError(
                name, f"Service '{manifest.name}' has no value for {name}",
            )


def validate_manifests(manifests: Iterable[ServiceManifest]) -> list[ServiceManifest]:
    """Check a set of manifests and return them in startup order.

    Raises:
        ConfigError: Duplicate service names.
        ImageReferenceError: Empty or malformed image reference.
        MissingConfigurationError: Missing secret material, or a
            dependency on an unknown service.
        PortCollisionError: Two bindings on the same host port.
        DependencyCycleError: The dependency edges contain a cycle.
    """
    by_name: dict[str, ServiceManifest] = {}
    for manifest in manifests:
        if manifest.name in by_name:
            raise ConfigError(f"Duplicate service name: {manifest.name}")
        by_name[manifest.name] = manifest

    for manifest in by_name.values():
        if not is_valid_image_ref(manifest.image):
            raise ImageReferenceError(manifest.name, manifest.image)
        _check_required_variables(manifest)

    port_owners: dict[int, list[str]] = {}
    for manifest in by_name.values():
        for binding in manifest.ports:
            port_owners.setdefault(binding.host_port, []).append(manifest.name)
    for port, owners in sorted(port_owners.items()):
        if len(owners) > 1:
            raise PortCollisionError(port, sorted(set(owners)))

    order = topological_order(
        {name: [d.service for d in m.depends_on] for name, m in by_name.items()}
    )
    return [by_name[name] for name in order]


def build(
    config: StackConfig,
    env_files: Mapping[str, EnvironmentFile],
    identities: Mapping[str, ServiceIdentity],
) -> list[ServiceManifest]:
    """Build the validated stack manifests, in startup order."""
    manifests = validate_manifests(plan_services(config, env_files, identities))
    logger.info("Built %d service manifests: %s", len(manifests), ", ".join(m.name for m in manifests))
    return manifests


def dependency_edges(manifests: Iterable[ServiceManifest]) -> set[tuple[str, str, str]]:
    """All ``(service, depends_on, condition)`` edges."""
    return {
        (m.name, dep.service, dep.condition)
        for m in manifests
        for dep in m.depends_on
    }


# ── Rendering ───────────────────────────────────────────────────────


def to_compose(manifests: Iterable[ServiceManifest], project_name: str) -> dict[str, Any]:
    """Render manifests as a compose document."""
    return {
        "name": project_name,
        "services": {m.name: m.to_compose() for m in manifests},
    }


def render_compose_yaml(manifests: Iterable[ServiceManifest], project_name: str) -> str:
    """Compose YAML text, services in the given order."""
    return COMPOSE_HEADER + yaml.safe_dump(
        to_compose(manifests, project_name),
        default_flow_style=False,
        sort_keys=False,
    )


def render_compose(config: StackConfig, manifests: list[ServiceManifest]) -> GeneratedFile:
    """Render the compose file handed to the runtime."""
    return GeneratedFile(
        path=str(config.compose_path),
        content=render_compose_yaml(manifests, config.project_name),
        mode=COMPOSE_MODE,
        reason=f"Stack manifest: {len(manifests)} service(s)",
    )
