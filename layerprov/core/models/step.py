"""
Step models — the declarative provisioning contract.

A step file declares an ordered list of ProvisioningSteps. Each step
names the identity it runs under, the actions to apply in order, and
the identity to restore afterward.

Two action kinds exist:

    switch_identity — change the active identity mid-step
    install         — ensure a set of packages is installed

YAML accepts a shorthand for both (``{install: [...]}`` and
``{switch: "user:group"}``); it is normalized before validation.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from layerprov.core.models.identity import ROOT, Identity
from layerprov.core.models.packages import PackageSet

DEFAULT_PACKAGE_MANAGER = "apt"


class SwitchIdentityAction(BaseModel):
    """Change the environment's active identity."""

    kind: Literal["switch_identity"] = "switch_identity"
    identity: Identity

    def describe(self) -> str:
        return f"switch identity to {self.identity}"


class EnsurePackagesAction(BaseModel):
    """Ensure every package in the set is installed.

    The whole set is one intent: if any identifier is unknown, nothing
    from this action is installed.
    """

    kind: Literal["install"] = "install"
    packages: PackageSet
    manager: str | None = None        # None = step file default
    refresh_index: bool = True        # update package index before installing
    clean_cache: bool = True          # drop package index/cache afterward

    @model_validator(mode="after")
    def _not_empty(self) -> EnsurePackagesAction:
        if not self.packages:
            raise ValueError("install action needs at least one package")
        return self

    def describe(self) -> str:
        return f"install {', '.join(sorted(self.packages))}"


StepAction = Annotated[
    SwitchIdentityAction | EnsurePackagesAction,
    Field(discriminator="kind"),
]


def _expand_shorthand(raw: Any) -> Any:
    """Turn ``{install: [...]}`` / ``{switch: x}`` into explicit actions."""
    if not isinstance(raw, dict) or "kind" in raw:
        return raw
    if "install" in raw:
        rest = {k: v for k, v in raw.items() if k != "install"}
        return {"kind": "install", "packages": raw["install"], **rest}
    if "switch" in raw:
        rest = {k: v for k, v in raw.items() if k != "switch"}
        return {"kind": "switch_identity", "identity": raw["switch"], **rest}
    return raw


class ProvisioningStep(BaseModel):
    """One ordered unit of privileged work."""

    name: str
    identity: Identity                  # required identity to run under
    post_identity: Identity             # identity restored afterward
    actions: list[StepAction] = Field(default_factory=list)
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Without an explicit post-condition the step hands back what it ran as
        if "post_identity" not in data and "identity" in data:
            data["post_identity"] = data["identity"]
        if isinstance(data.get("actions"), list):
            data["actions"] = [_expand_shorthand(a) for a in data["actions"]]
        return data

    def action_id(self, index: int) -> str:
        """Stable identifier for the action at ``index``."""
        return f"{self.name}:{index}:{self.actions[index].kind}"


class StepFile(BaseModel):
    """Top-level declaration loaded from ``provision.yml``."""

    name: str = ""
    description: str = ""
    base_image: str = ""
    package_manager: str = DEFAULT_PACKAGE_MANAGER
    initial_identity: Identity = ROOT

    # Seeds for mock mode: which identities exist and which packages resolve.
    # An empty catalog means every identifier resolves.
    identities: list[Identity] = Field(default_factory=list)
    known_packages: PackageSet = Field(default_factory=set)

    steps: list[ProvisioningStep] = Field(default_factory=list)

    def get_step(self, name: str) -> ProvisioningStep | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    @property
    def final_identity(self) -> Identity:
        """Identity the environment is left in after the whole sequence."""
        if not self.steps:
            return self.initial_identity
        return self.steps[-1].post_identity
