"""
Action and Receipt models — the contract with the container runtime.

The deploy pipeline asks the runtime to do something with an Action
(``up``, ``down``, ``ps``) and gets a Receipt back. Runtime adapters
never raise: every failure is captured in the Receipt.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """A runtime operation requested by the deploy pipeline."""

    id: str                         # unique action identifier
    adapter: str                    # which adapter handles this
    operation: str = ""             # up, down, ps, config
    params: dict[str, Any] = Field(default_factory=dict)


class Receipt(BaseModel):
    """Result of a runtime adapter execution."""

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    command: list[str] = Field(default_factory=list)
    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        """Create a success receipt."""
        return cls(adapter=adapter, action_id=action_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **kwargs: Any) -> Receipt:
        """Create a failure receipt."""
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)

    @classmethod
    def skip(cls, adapter: str, action_id: str, reason: str = "", **kwargs: Any) -> Receipt:
        """Create a skip receipt (e.g. dry run)."""
        return cls(adapter=adapter, action_id=action_id, status="skipped", output=reason, **kwargs)
