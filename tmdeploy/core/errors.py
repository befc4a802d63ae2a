"""
Deployment errors — the fatal precondition failures.

Every error here is raised before any container is started. None of
them is retried: each one reflects a configuration or host defect that
needs an operator, not a transient condition.
"""

from __future__ import annotations


class DeployError(Exception):
    """Base class for all deployment failures."""


class ConfigError(DeployError):
    """Raised when the configuration file is missing, unreadable or invalid."""


class MissingSeedError(DeployError):
    """The host seed is absent or empty, so no secret can be derived."""


class MissingConfigurationError(DeployError):
    """A required configuration field is absent."""

    def __init__(self, field: str, message: str = ""):
        self.field = field
        super().__init__(message or f"Missing required configuration field: {field}")


class DependencyCycleError(DeployError):
    """Service dependency edges do not form a DAG."""

    def __init__(self, services: list[str]):
        self.services = services
        super().__init__(
            "Dependency cycle detected between services: " + ", ".join(services)
        )


class PortCollisionError(DeployError):
    """Two services bind the same host port."""

    def __init__(self, port: int, services: list[str]):
        self.port = port
        self.services = services
        super().__init__(
            f"Host port {port} is bound by more than one service: {', '.join(services)}"
        )


class ImageReferenceError(DeployError):
    """A service image reference is empty or not a valid reference."""

    def __init__(self, service: str, image: str):
        self.service = service
        self.image = image
        super().__init__(f"Unresolvable image reference for '{service}': {image!r}")


class EnvValueError(DeployError):
    """An environment variable cannot be written to an env file safely."""

    def __init__(self, name: str, reason: str):
        self.name = name
        super().__init__(f"Cannot write environment variable {name!r}: {reason}")


class FilesystemProvisionError(DeployError):
    """A file or directory could not be created, chowned or chmodded."""

    def __init__(self, path: object, reason: str):
        self.path = str(path)
        super().__init__(f"Cannot provision {path}: {reason}")


class IdentityConflictError(DeployError):
    """A host account or group exists with a different numeric id."""
