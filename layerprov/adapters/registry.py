"""
Backend registry — central lookup for provisioning collaborators.

The registry holds the identity backend and the package managers by
name. The engine never picks a backend itself: install actions name a
manager (or fall back to the default) and the registry resolves it.

Mock mode swaps every collaborator for an in-memory double seeded from
the step file, so a sequence can be rehearsed without touching the host.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from layerprov.adapters.base import IdentityBackend, PackageManager
from layerprov.adapters.mock import MockIdentityBackend, MockPackageManager
from layerprov.core.errors import PackageManagerError
from layerprov.core.models.identity import Identity
from layerprov.core.models.step import DEFAULT_PACKAGE_MANAGER, StepFile

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Registry and resolver for identity and package backends.

    Features:
        - One identity backend per registry
        - Register/unregister package managers by name
        - Resolve the manager for an install action
        - Query backend availability
    """

    def __init__(
        self,
        identity: IdentityBackend,
        package_managers: Iterable[PackageManager] = (),
        default_manager: str = DEFAULT_PACKAGE_MANAGER,
        mock_mode: bool = False,
    ):
        self._identity = identity
        self._managers: dict[str, PackageManager] = {}
        self._default_manager = default_manager
        self._mock_mode = mock_mode
        for manager in package_managers:
            self.register(manager)

    @property
    def identity(self) -> IdentityBackend:
        return self._identity

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    @property
    def default_manager(self) -> str:
        return self._default_manager

    def register(self, manager: PackageManager) -> None:
        """Register a package manager under its name."""
        name = manager.name
        if name in self._managers:
            logger.warning("Overwriting existing package manager: %s", name)
        self._managers[name] = manager
        logger.debug("Registered package manager: %s", name)

    def unregister(self, name: str) -> None:
        """Remove a package manager from the registry."""
        self._managers.pop(name, None)

    def get(self, name: str) -> PackageManager | None:
        """Look up a package manager by name."""
        return self._managers.get(name)

    def list_managers(self) -> list[str]:
        """List all registered package manager names."""
        return list(self._managers.keys())

    def resolve_manager(self, name: str | None = None) -> PackageManager:
        """The manager for an install action (``None`` = default).

        Raises:
            PackageManagerError: no manager registered under that name.
        """
        key = name or self._default_manager
        manager = self._managers.get(key)
        if manager is None:
            raise PackageManagerError(f"No package manager registered for '{key}'")
        return manager

    def backend_status(self) -> dict[str, dict[str, Any]]:
        """Availability of the identity backend and every package manager."""
        status: dict[str, dict[str, Any]] = {
            "identity": {
                "name": self._identity.name,
                "available": self._identity.is_available(),
                "type": self._identity.__class__.__name__,
            },
        }
        for name, manager in self._managers.items():
            try:
                available = manager.is_available()
            except Exception:
                available = False
            status[name] = {
                "name": name,
                "available": available,
                "type": manager.__class__.__name__,
                "default": name == self._default_manager,
            }
        return status


def mock_registry(step_file: StepFile) -> BackendRegistry:
    """Registry of in-memory doubles seeded from a step file.

    Every identity the file mentions is known unless ``identities`` is
    declared, in which case only those (plus root) exist.
    """
    if step_file.identities:
        identities: set[Identity] = set(step_file.identities)
    else:
        identities = {step_file.initial_identity}
        for step in step_file.steps:
            identities.update({step.identity, step.post_identity})
            for action in step.actions:
                if action.kind == "switch_identity":
                    identities.add(action.identity)

    managers = {step_file.package_manager}
    for step in step_file.steps:
        for action in step.actions:
            if action.kind == "install" and action.manager:
                managers.add(action.manager)

    return BackendRegistry(
        identity=MockIdentityBackend(identities),
        package_managers=[
            MockPackageManager(step_file.known_packages, manager_name=name)
            for name in sorted(managers)
        ],
        default_manager=step_file.package_manager,
        mock_mode=True,
    )


def system_registry(step_file: StepFile) -> BackendRegistry:
    """Registry of real host backends."""
    from layerprov.adapters.packages.apt import AptPackageManager
    from layerprov.adapters.system.accounts import PosixIdentityBackend

    return BackendRegistry(
        identity=PosixIdentityBackend(),
        package_managers=[AptPackageManager()],
        default_manager=step_file.package_manager,
    )
