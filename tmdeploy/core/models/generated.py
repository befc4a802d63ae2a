"""
Generated file model — the compose document handed to the runtime.
"""

from __future__ import annotations

from pydantic import BaseModel


class GeneratedFile(BaseModel):
    """A file produced by the manifest builder.

    Attributes:
        path:    Absolute target path.
        content: Full file content.
        mode:    Permission bits to write it with.
        reason:  Why this file was generated.
    """

    path: str
    content: str
    mode: int = 0o640
    reason: str = ""
