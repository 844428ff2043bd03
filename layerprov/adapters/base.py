"""
Backend base — the contracts between the engine and the system.

The engine never touches users, groups or package databases directly.
It talks to two collaborators:

    IdentityBackend — resolves and assumes user/group identities
    PackageManager  — answers "is it installed?" and installs packages

Both operate on an explicit Environment rather than process-wide state.
Failures are raised as ProvisioningErrors; successful work returns a
Receipt.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable

from layerprov.core.errors import UnresolvedPackageError
from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import Identity
from layerprov.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class IdentityBackend(ABC):
    """Identity/privilege subsystem.

    To create a new backend:
        1. Subclass IdentityBackend
        2. Implement name, identity_exists, switch_identity
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g., 'posix', 'mock')."""

    @abstractmethod
    def identity_exists(self, identity: Identity) -> bool:
        """Whether the user and group both exist."""

    @abstractmethod
    def switch_identity(self, env: Environment, identity: Identity) -> None:
        """Make ``identity`` the active identity of ``env``.

        Raises:
            IdentitySwitchError: identity unknown or cannot be assumed.
                ``env.current_identity`` is left unchanged.
        """

    def current_identity(self, env: Environment) -> Identity:
        return env.current_identity

    def is_available(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class PackageManager(ABC):
    """Package manager collaborator.

    Subclasses implement the lookups and the raw install; the idempotency
    logic in ``ensure_installed`` is shared:

        1. Every requested identifier must resolve, or nothing is installed
        2. Packages already present are skipped
        3. Only the missing subset is handed to ``_install``
        4. The Environment records the newly installed packages
    """

    # Whether ``_prepare_index`` refreshes a local index that can go stale
    refreshes_index = False

    @property
    @abstractmethod
    def name(self) -> str:
        """The manager identifier (e.g., 'apt', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the underlying tool exists. Should be fast and never raise."""

    @abstractmethod
    def is_installed(self, env: Environment, package: str) -> bool:
        """Whether ``package`` is already installed in ``env``."""

    @abstractmethod
    def is_known(self, package: str) -> bool:
        """Whether the manager can resolve ``package`` at all."""

    @abstractmethod
    def _install(
        self,
        env: Environment,
        packages: list[str],
        *,
        refresh_index: bool,
        clean_cache: bool,
    ) -> str:
        """Install ``packages`` as ``env.current_identity``.

        Returns a short output summary.

        Raises:
            PackageManagerError: the install mechanism failed.
        """

    def ensure_installed(
        self,
        env: Environment,
        packages: Iterable[str],
        *,
        action_id: str = "",
        refresh_index: bool = True,
        clean_cache: bool = True,
        dry_run: bool = False,
    ) -> Receipt:
        """Idempotently ensure ``packages`` are installed in ``env``.

        Raises:
            UnresolvedPackageError: an identifier is unknown.
            PackageManagerError: the install mechanism failed.
        """
        requested = sorted(set(packages))
        start = time.monotonic()

        # Installed packages resolve by definition; only look up the rest
        missing = [p for p in requested if not self.is_installed(env, p)]
        if missing and refresh_index and not dry_run:
            self._prepare_index(env)
        unknown = [p for p in missing if not self.is_known(p)]
        # A dry run never refreshes the index, so a stale or emptied index
        # cannot prove an identifier unknown when the real run would refresh
        pending = dry_run and refresh_index and self.refreshes_index
        if unknown and not pending:
            raise UnresolvedPackageError(unknown, manager=self.name)

        metadata = {"manager": self.name, "requested": requested, "missing": missing}

        if not missing:
            logger.debug("All %d package(s) already installed", len(requested))
            # Keep the environment's view in sync with what the system reports
            env.add_packages(requested)
            return Receipt.skip(
                action_id=action_id,
                reason="already installed: " + ", ".join(requested),
                metadata=metadata,
            )

        if dry_run:
            reason = "[dry-run] would install: " + ", ".join(missing)
            if unknown:
                reason += "; resolution pending index refresh: " + ", ".join(unknown)
            return Receipt.skip(
                action_id=action_id,
                reason=reason,
                metadata={**metadata, "dry_run": True, "unresolved": unknown},
            )

        logger.info("Installing %s via %s as %s", ", ".join(missing), self.name, env.current_identity)
        output = self._install(
            env,
            missing,
            refresh_index=refresh_index,
            clean_cache=clean_cache,
        )
        env.add_packages(requested)

        return Receipt.success(
            action_id=action_id,
            output=output or "installed: " + ", ".join(missing),
            duration_ms=int((time.monotonic() - start) * 1000),
            metadata=metadata,
        )

    def _prepare_index(self, env: Environment) -> None:
        """Bring the package index up to date before resolving (optional)."""

    def install_command(
        self,
        packages: Iterable[str],
        refresh_index: bool = True,
        clean_cache: bool = True,
    ) -> str:
        """Shell form of the install, used when rendering Dockerfiles."""
        raise NotImplementedError(f"{self.name} cannot render an install command")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
