"""
Domain models — Pydantic types for provisioning.

All models are re-exported here for convenient access:

    from layerprov.core.models import Environment, Identity, ProvisioningStep, Receipt
"""

from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import ROOT, Identity
from layerprov.core.models.packages import PackageSet, normalize_packages
from layerprov.core.models.receipt import Receipt
from layerprov.core.models.step import (
    DEFAULT_PACKAGE_MANAGER,
    EnsurePackagesAction,
    ProvisioningStep,
    StepAction,
    StepFile,
    SwitchIdentityAction,
)

__all__ = [
    "DEFAULT_PACKAGE_MANAGER",
    "ROOT",
    # step.py
    "EnsurePackagesAction",
    # environment.py
    "Environment",
    # identity.py
    "Identity",
    # packages.py
    "PackageSet",
    "ProvisioningStep",
    # receipt.py
    "Receipt",
    "StepAction",
    "StepFile",
    "SwitchIdentityAction",
    "normalize_packages",
]
