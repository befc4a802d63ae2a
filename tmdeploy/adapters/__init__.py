"""Adapters — bindings to the external container runtime.

Public re-exports for convenient access.
"""

from tmdeploy.adapters.base import Adapter, ExecutionContext
from tmdeploy.adapters.containers.compose import ComposeAdapter, runtime_adapter
from tmdeploy.adapters.mock import MockAdapter

__all__ = [
    "Adapter",
    "ComposeAdapter",
    "ExecutionContext",
    "MockAdapter",
    "runtime_adapter",
]
