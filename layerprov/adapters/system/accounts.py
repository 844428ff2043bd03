"""
POSIX identity backend — users and groups from the host account database.

Switching identity does not change the uid of this Python process. It
records the identity on the Environment after checking that the
orchestrator could act as it; commands run afterward are executed
under that identity by the command runner.

The orchestrator may assume an identity when:
    - it runs as root, or
    - it already is that user and group, or
    - passwordless ``sudo -n`` is allowed for that user/group
"""

from __future__ import annotations

import grp
import logging
import os
import pwd

from layerprov.adapters.base import IdentityBackend
from layerprov.adapters.shell.command import process_identity, run_command
from layerprov.core.errors import IdentitySwitchError
from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import Identity

logger = logging.getLogger(__name__)


def user_exists(user: str) -> bool:
    try:
        pwd.getpwnam(user)
    except KeyError:
        return False
    return True


def group_exists(group: str) -> bool:
    try:
        grp.getgrnam(group)
    except KeyError:
        return False
    return True


class PosixIdentityBackend(IdentityBackend):
    """Identity backend backed by ``pwd``/``grp`` and ``sudo -n``."""

    def __init__(self) -> None:
        # Identities already proven assumable during this run
        self._verified: set[Identity] = set()

    @property
    def name(self) -> str:
        return "posix"

    def identity_exists(self, identity: Identity) -> bool:
        return user_exists(identity.user) and group_exists(identity.group)

    def can_assume(self, identity: Identity) -> bool:
        """Whether this process may act as ``identity``."""
        if identity in self._verified:
            return True
        if os.geteuid() == 0 or identity == process_identity():
            allowed = True
        else:
            probe = run_command(["true"], identity=identity, timeout=15)
            allowed = probe.ok
            if not allowed:
                logger.debug("sudo probe for %s failed: %s", identity, probe.describe_failure())
        if allowed:
            self._verified.add(identity)
        return allowed

    def switch_identity(self, env: Environment, identity: Identity) -> None:
        if not user_exists(identity.user):
            raise IdentitySwitchError(f"No such user: {identity.user}", identity=str(identity))
        if not group_exists(identity.group):
            raise IdentitySwitchError(f"No such group: {identity.group}", identity=str(identity))
        if not self.can_assume(identity):
            raise IdentitySwitchError(
                f"Not permitted to assume identity {identity} "
                f"(run as root or allow passwordless sudo)",
                identity=str(identity),
            )
        logger.debug("Identity %s -> %s", env.current_identity, identity)
        env.current_identity = identity
