"""
APT package manager — Debian/Ubuntu package installation.

Read-only lookups (``dpkg-query``, ``apt-cache``) run as the process
identity. Index refresh, install and cache cleanup run as the
environment's current identity through the command runner.

Virtual packages (e.g. ``libasound-dev``, provided by
``libasound2-dev``) resolve and count as installed through their
providers, the same way ``apt-get install`` treats them.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable

from layerprov.adapters.base import PackageManager
from layerprov.adapters.shell.command import run_command
from layerprov.core.errors import PackageManagerError
from layerprov.core.models.environment import Environment

logger = logging.getLogger(__name__)

APT_LISTS_DIR = "/var/lib/apt/lists"
_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager(PackageManager):
    """Install packages with ``apt-get``."""

    refreshes_index = True

    def __init__(self, install_timeout: int = 600, lookup_timeout: int = 30):
        self._install_timeout = install_timeout
        self._lookup_timeout = lookup_timeout
        self._index_fresh = False

    @property
    def name(self) -> str:
        return "apt"

    def is_available(self) -> bool:
        return all(shutil.which(tool) for tool in ("apt-get", "apt-cache", "dpkg-query"))

    # ── Lookups ──────────────────────────────────────────────────

    def _dpkg_installed(self, package: str) -> bool:
        result = run_command(
            ["dpkg-query", "-W", "-f=${Status}", package],
            timeout=self._lookup_timeout,
        )
        return result.ok and result.stdout.strip().endswith("install ok installed")

    def _candidate(self, package: str) -> str | None:
        result = run_command(["apt-cache", "policy", package], timeout=self._lookup_timeout)
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.startswith("Candidate:"):
                value = line.split(":", 1)[1].strip()
                return None if value in ("", "(none)") else value
        return None

    def providers(self, package: str) -> list[str]:
        """Real packages providing ``package`` (for virtual packages)."""
        result = run_command(["apt-cache", "showpkg", package], timeout=self._lookup_timeout)
        if not result.ok:
            return []
        return parse_reverse_provides(result.stdout)

    def is_installed(self, env: Environment, package: str) -> bool:
        if self._dpkg_installed(package):
            return True
        return any(self._dpkg_installed(p) for p in self.providers(package))

    def is_known(self, package: str) -> bool:
        return self._candidate(package) is not None or bool(self.providers(package))

    # ── Mutations ────────────────────────────────────────────────

    def _run_checked(self, env: Environment, cmd: list[str], what: str) -> str:
        result = run_command(
            cmd,
            identity=env.current_identity,
            timeout=self._install_timeout,
            env_overrides=_APT_ENV,
        )
        if not result.ok:
            raise PackageManagerError(
                f"{what} failed as {env.current_identity}: {result.describe_failure()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout

    def _prepare_index(self, env: Environment) -> None:
        """Refresh the package index (``apt-get update``) once per run."""
        if self._index_fresh:
            return
        self._run_checked(env, ["apt-get", "update"], "apt-get update")
        self._index_fresh = True

    def _install(
        self,
        env: Environment,
        packages: list[str],
        *,
        refresh_index: bool,
        clean_cache: bool,
    ) -> str:
        output = self._run_checked(
            env,
            ["apt-get", "install", "-y", *packages],
            "apt-get install",
        )
        if clean_cache:
            self._run_checked(
                env,
                ["sh", "-c", f"rm -rf {APT_LISTS_DIR}/*"],
                "apt cache cleanup",
            )
            self._index_fresh = False
        return output.strip().splitlines()[-1] if output.strip() else ""

    def install_command(
        self,
        packages: Iterable[str],
        refresh_index: bool = True,
        clean_cache: bool = True,
    ) -> str:
        parts = []
        if refresh_index:
            parts.append("apt-get update")
        parts.append("apt-get install -y \\\n  " + " \\\n  ".join(sorted(packages)))
        if clean_cache:
            parts.append(f"rm -rf {APT_LISTS_DIR}/*")
        return " && ".join(parts)


def parse_reverse_provides(showpkg_output: str) -> list[str]:
    """Extract provider names from ``apt-cache showpkg`` output.

    The section looks like::

        Reverse Provides:
        libasound2-dev 1.2.8-1+b1 (= )
    """
    providers: list[str] = []
    in_section = False
    for line in showpkg_output.splitlines():
        if line.startswith("Reverse Provides:"):
            in_section = True
            continue
        if in_section:
            if not line.strip() or line.rstrip().endswith(":"):
                break
            name = line.split()[0]
            if name not in providers:
                providers.append(name)
    return providers
