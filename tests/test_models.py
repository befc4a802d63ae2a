"""
Tests for domain models — manifests, receipts, secrets.
"""

import pytest
from pydantic import ValidationError

from tmdeploy.core.models import (
    Dependency,
    DerivedSecret,
    EnvironmentFile,
    HealthCheck,
    PortBinding,
    Receipt,
    ServiceIdentity,
    ServiceManifest,
    VolumeBinding,
)


class TestServiceManifest:
    """Tests for ServiceManifest.to_compose()."""

    def test_minimal(self):
        spec = ServiceManifest(name="x", image="x:1").to_compose()
        assert spec == {"image": "x:1", "restart": "always", "cap_drop": ["ALL"]}

    def test_full(self):
        owner = ServiceIdentity(name="db", uid=721, gid=720)
        manifest = ServiceManifest(
            name="postgres",
            image="postgres:15",
            ports=[PortBinding(host_port=5432, container_port=5432)],
            environment_file=EnvironmentFile(service="postgres", path="/run/pg.env", variables={"A": "s3cret"}),
            volumes=[VolumeBinding(host_path="/var/lib/tm/postgres", container_path="/data", owner=owner)],
            depends_on=[Dependency(service="init", condition="service_healthy")],
            cap_add=["CHOWN"],
            user=owner.user_spec,
            healthcheck=HealthCheck(test=["CMD", "true"]),
        )
        spec = manifest.to_compose()

        assert spec["user"] == "721:720"
        assert spec["ports"] == ["5432:5432"]
        assert spec["env_file"] == ["/run/pg.env"]
        assert spec["volumes"] == ["/var/lib/tm/postgres:/data"]
        assert spec["cap_drop"] == ["ALL"]
        assert spec["cap_add"] == ["CHOWN"]
        assert spec["depends_on"] == {"init": {"condition": "service_healthy"}}
        assert spec["healthcheck"]["retries"] == 5
        assert "s3cret" not in str(spec)

    def test_depends_on_service(self):
        manifest = ServiceManifest(name="a", image="a:1", depends_on=[Dependency(service="b")])
        assert manifest.depends_on_service("b").condition == "service_started"
        assert not manifest.depends_on_service("b").healthy
        assert manifest.depends_on_service("c") is None

    def test_bad_condition(self):
        with pytest.raises(ValidationError):
            Dependency(service="b", condition="service_ready")

    def test_port_range(self):
        with pytest.raises(ValidationError):
            PortBinding(host_port=70000, container_port=80)


class TestEnvironmentFile:
    def test_repr_hides_variables(self):
        env = EnvironmentFile(service="s", path="/p", variables={"PASS": "hunter2"})
        assert "hunter2" not in repr(env)
        assert env.names == ["PASS"]


class TestDerivedSecret:
    def test_dump_masks_value(self):
        secret = DerivedSecret(key="k", value="v4lue")
        assert "v4lue" not in secret.model_dump_json()
        assert secret.reveal() == "v4lue"


class TestReceipt:
    """Tests for Receipt factories."""

    def test_factories(self):
        assert Receipt.success("podman", "op").ok
        assert Receipt.failure("podman", "op", error="x").failed
        skipped = Receipt.skip("podman", "op", reason="dry run")
        assert skipped.status == "skipped"
        assert skipped.output == "dry run"
        assert not skipped.ok and not skipped.failed
