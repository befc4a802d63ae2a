"""
Service identity — the unprivileged account a container runs as.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ServiceIdentity(BaseModel):
    """A dedicated, non-interactive system account for one service.

    Created once at provisioning time and immutable afterwards. The uid
    is unique and stable across redeploys; the gid is shared by the
    whole stack.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    uid: int
    gid: int
    service: str = ""

    @property
    def user_spec(self) -> str:
        """``uid:gid`` as the runtime's ``user`` field expects it."""
        return f"{self.uid}:{self.gid}"
