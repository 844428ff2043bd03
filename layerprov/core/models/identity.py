"""
Identity — the user/group execution context a step runs under.

Identities are written the way Docker's ``USER`` instruction takes them:
``"user:group"``, or just ``"user"`` (group defaults to the user name).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, model_serializer, model_validator

ROOT_USER = "root"


class Identity(BaseModel):
    """A {user, group} pair. Immutable and hashable."""

    model_config = ConfigDict(frozen=True)

    user: str
    group: str

    @model_validator(mode="before")
    @classmethod
    def _parse(cls, data: Any) -> Any:
        if isinstance(data, str):
            return _split(data)
        if isinstance(data, dict) and "user" in data and not data.get("group"):
            return {**data, "group": data["user"]}
        return data

    @model_validator(mode="after")
    def _check(self) -> Identity:
        for label, value in (("user", self.user), ("group", self.group)):
            if not value or ":" in value or value != value.strip():
                raise ValueError(f"Invalid identity {label}: {value!r}")
        return self

    @model_serializer
    def _serialize(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, value: str | Identity) -> Identity:
        """Build an Identity from ``"user[:group]"`` (or pass one through)."""
        if isinstance(value, Identity):
            return value
        return cls.model_validate(value)

    @property
    def privileged(self) -> bool:
        return self.user == ROOT_USER

    def __str__(self) -> str:
        return f"{self.user}:{self.group}"


def _split(raw: str) -> dict[str, str]:
    text = raw.strip()
    if not text:
        raise ValueError("Identity must not be empty")
    user, sep, group = text.partition(":")
    return {"user": user, "group": group if sep else user}


ROOT = Identity(user=ROOT_USER, group=ROOT_USER)
