"""
Mock backends — in-memory test doubles for identity and packages.

Used in mock mode to rehearse a step file without touching the host,
and throughout the test suite. Both keep a call log and can be told to
fail specific operations.
"""

from __future__ import annotations

from collections.abc import Iterable

from layerprov.adapters.base import IdentityBackend, PackageManager
from layerprov.core.errors import IdentitySwitchError, PackageManagerError
from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import ROOT, Identity


class MockIdentityBackend(IdentityBackend):
    """Identity backend over a fixed set of known identities.

    ``root:root`` is always known. Identities listed in ``denied`` exist
    but cannot be assumed (models a missing privilege).
    """

    def __init__(
        self,
        identities: Iterable[Identity | str] = (),
        denied: Iterable[Identity | str] = (),
        backend_name: str = "mock",
    ):
        self._name = backend_name
        self._known: set[Identity] = {ROOT} | {Identity.parse(i) for i in identities}
        self._denied: set[Identity] = {Identity.parse(i) for i in denied}
        self._known |= self._denied
        self._call_log: list[Identity] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[Identity]:
        """Every identity a switch was requested for, in order."""
        return self._call_log

    @property
    def known(self) -> set[Identity]:
        return set(self._known)

    def add_identity(self, identity: Identity | str) -> None:
        self._known.add(Identity.parse(identity))

    def deny(self, identity: Identity | str) -> None:
        """Make ``identity`` exist but refuse to assume it."""
        identity = Identity.parse(identity)
        self._known.add(identity)
        self._denied.add(identity)

    def identity_exists(self, identity: Identity) -> bool:
        return identity in self._known

    def switch_identity(self, env: Environment, identity: Identity) -> None:
        self._call_log.append(identity)
        if identity not in self._known:
            raise IdentitySwitchError(f"Unknown identity: {identity}", identity=str(identity))
        if identity in self._denied:
            raise IdentitySwitchError(
                f"Not permitted to assume identity {identity} from {env.current_identity}",
                identity=str(identity),
            )
        env.current_identity = identity

    def reset(self) -> None:
        """Clear the call log."""
        self._call_log.clear()


class MockPackageManager(PackageManager):
    """Package manager over an in-memory catalog.

    An empty catalog resolves every identifier. Packages listed via
    ``set_failure`` make the install mechanism fail.
    """

    def __init__(
        self,
        catalog: Iterable[str] = (),
        manager_name: str = "mock",
        available: bool = True,
        require_privileged: bool = True,
    ):
        self._name = manager_name
        self._catalog: set[str] = set(catalog)
        self._available = available
        self._require_privileged = require_privileged
        self._failures: dict[str, str] = {}
        self._install_log: list[list[str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def install_log(self) -> list[list[str]]:
        """Package lists handed to the install mechanism, in order."""
        return self._install_log

    @property
    def install_count(self) -> int:
        return len(self._install_log)

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, package: str, error: str = "Mock install failure") -> None:
        """Configure the install of ``package`` to fail."""
        self._failures[package] = error

    def is_installed(self, env: Environment, package: str) -> bool:
        return env.has_package(package)

    def is_known(self, package: str) -> bool:
        return not self._catalog or package in self._catalog

    def _install(
        self,
        env: Environment,
        packages: list[str],
        *,
        refresh_index: bool,
        clean_cache: bool,
    ) -> str:
        if self._require_privileged and not env.current_identity.privileged:
            raise PackageManagerError(
                f"Installing packages requires root, running as {env.current_identity}",
                returncode=100,
            )
        for package in packages:
            if package in self._failures:
                raise PackageManagerError(self._failures[package], returncode=100)
        self._install_log.append(list(packages))
        return f"[mock] installed: {', '.join(packages)}"

    def install_command(
        self,
        packages: Iterable[str],
        refresh_index: bool = True,
        clean_cache: bool = True,
    ) -> str:
        return "mock-install " + " ".join(sorted(packages))

    def reset(self) -> None:
        """Clear the install log and configured failures."""
        self._install_log.clear()
        self._failures.clear()
