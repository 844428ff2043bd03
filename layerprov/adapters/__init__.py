"""Adapters — identity and package backends for provisioning.

Public re-exports for convenient access.
"""

from layerprov.adapters.base import IdentityBackend, PackageManager
from layerprov.adapters.mock import MockIdentityBackend, MockPackageManager
from layerprov.adapters.registry import BackendRegistry, mock_registry, system_registry

__all__ = [
    "BackendRegistry",
    "IdentityBackend",
    "MockIdentityBackend",
    "MockPackageManager",
    "PackageManager",
    "mock_registry",
    "system_registry",
]
