"""
Derived secret model.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, SecretStr


class DerivedSecret(BaseModel):
    """A secret value that is a pure function of (key, host seed).

    The seed is never kept on the model, and the value is a SecretStr so
    it stays out of reprs, logs and ``model_dump_json`` output.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: SecretStr

    def reveal(self) -> str:
        return self.value.get_secret_value()
