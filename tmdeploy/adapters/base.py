"""
Adapter base — the contract between the deploy pipeline and the runtime.

The container runtime is an external collaborator: tmdeploy hands it a
compose file and asks it to start, stop or list the stack. Adapters
wrap that exchange and never raise; every outcome is a Receipt.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel

from tmdeploy.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """Everything a runtime adapter needs to execute an action."""

    action: Action
    project_name: str = "teslamate"
    compose_file: str = ""
    dry_run: bool = False
    timeout: int = 300


class Adapter(ABC):
    """Abstract base class for runtime adapters.

    To add a runtime:
        1. Subclass Adapter
        2. Implement name, is_available, validate, execute
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'podman', 'docker')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the runtime's CLI is installed. Fast, never raises."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt. MUST never raise."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
