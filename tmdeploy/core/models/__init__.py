"""
Domain models — Pydantic types for the deployment.

All models are re-exported here for convenient access:

    from tmdeploy.core.models import StackConfig, ServiceManifest, ServiceIdentity
"""

from tmdeploy.core.models.action import Action, Receipt
from tmdeploy.core.models.config import (
    GroupConfig,
    HealthCheckConfig,
    IdentityEntry,
    ImageConfig,
    MqttConfig,
    RuntimeConfig,
    StackConfig,
)
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
from tmdeploy.core.models.secret import DerivedSecret
from tmdeploy.core.models.state import ApplyRecord, ArtifactState, DeploymentState

__all__ = [
    # action.py
    "Action",
    "Receipt",
    # config.py
    "GroupConfig",
    "HealthCheckConfig",
    "IdentityEntry",
    "ImageConfig",
    "MqttConfig",
    "RuntimeConfig",
    "StackConfig",
    # generated.py
    "GeneratedFile",
    # identity.py
    "ServiceIdentity",
    # manifest.py
    "Dependency",
    "EnvironmentFile",
    "HealthCheck",
    "PortBinding",
    "ServiceManifest",
    "VolumeBinding",
    # secret.py
    "DerivedSecret",
    # state.py
    "ApplyRecord",
    "ArtifactState",
    "DeploymentState",
]
