"""
Mock runtime adapter — stands in for podman/docker in tests and --mock runs.
"""

from __future__ import annotations

from tmdeploy.adapters.base import Adapter, ExecutionContext
from tmdeploy.core.models.action import Receipt


class MockAdapter(Adapter):
    """Records every action and succeeds unless told otherwise."""

    def __init__(self, adapter_name: str = "mock", available: bool = True):
        self._name = adapter_name
        self._available = available
        self._failures: dict[str, str] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        return self._call_log

    @property
    def operations(self) -> list[str]:
        """Operations received so far, in order."""
        return [ctx.action.operation for ctx in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, operation: str, error: str = "Mock failure") -> None:
        """Make every action with *operation* fail."""
        self._failures[operation] = error

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        operation = context.action.operation

        if operation in self._failures:
            return Receipt.failure(
                adapter=self._name,
                action_id=context.action.id,
                error=self._failures[operation],
            )
        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=f"[mock] {operation}",
            metadata={"mock": True},
        )
