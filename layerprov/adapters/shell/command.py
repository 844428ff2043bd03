"""
Command runner — the single place ``subprocess.run`` is called.

Package managers and identity backends go through ``run_command`` so
that privilege handling, logging and error capture live in one spot.
The runner never raises: every outcome comes back as a CommandResult.

Privilege invariants:
    - When the target identity differs from the process identity the
      command is prefixed with ``sudo -n -u USER -g GROUP --``
    - ``-n`` means sudo never prompts; a missing rule is a failure
    - No passwords are accepted, stored, or logged
    - Environment overrides are passed as ``env K=V`` after ``--``,
      since sudo drops the caller's environment
    - stdin is closed, so nothing can wait on a prompt
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import subprocess
import time
from dataclasses import dataclass

from layerprov.core.models.identity import Identity

logger = logging.getLogger(__name__)

# Output tails kept on results (long apt logs are not useful in reports)
_OUTPUT_TAIL = 2000


@dataclass
class CommandResult:
    """Outcome of one command."""

    cmd: list[str]
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.error

    def describe_failure(self) -> str:
        """One-line failure summary for error messages."""
        if self.error:
            return self.error
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
        suffix = f": {detail}" if detail else ""
        return f"Command failed (exit {self.returncode}){suffix}"


def process_identity() -> Identity:
    """The identity this Python process is actually running as."""
    uid, gid = os.geteuid(), os.getegid()
    try:
        user = pwd.getpwuid(uid).pw_name
    except KeyError:
        user = str(uid)
    try:
        group = grp.getgrgid(gid).gr_name
    except KeyError:
        group = str(gid)
    return Identity(user=user, group=group)


def sudo_prefix(identity: Identity | None) -> list[str]:
    """Command prefix needed to run as ``identity`` (empty if already it)."""
    if identity is None or identity == process_identity():
        return []
    return ["sudo", "-n", "-u", identity.user, "-g", identity.group, "--"]


def run_command(
    cmd: list[str],
    *,
    identity: Identity | None = None,
    timeout: int = 120,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command, optionally as another identity.

    Args:
        cmd: Command list for ``subprocess.run()``.
        identity: Identity to run as. None means the process identity.
        timeout: Seconds before the command is killed.
        env_overrides: Extra environment variables.
        cwd: Working directory for the command.

    Returns:
        CommandResult. ``ok`` is True only for exit code 0.
    """
    prefix = sudo_prefix(identity)
    full_cmd = prefix + list(cmd)
    if prefix and env_overrides:
        # sudo resets the environment, so overrides go on the command line
        assignments = [f"{key}={value}" for key, value in env_overrides.items()]
        full_cmd = prefix + ["env", *assignments] + list(cmd)

    env = os.environ.copy()
    if env_overrides:
        env.update(env_overrides)

    logger.debug("Executing: %s", " ".join(full_cmd))
    start = time.monotonic()
    try:
        proc = subprocess.run(
            full_cmd,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            text=True,
            timeout=timeout,
            env=env,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            cmd=full_cmd,
            elapsed_ms=int((time.monotonic() - start) * 1000),
            error=f"Command timed out ({timeout}s)",
        )
    except OSError as e:
        return CommandResult(cmd=full_cmd, error=f"Cannot execute {full_cmd[0]}: {e}")

    result = CommandResult(
        cmd=full_cmd,
        returncode=proc.returncode,
        stdout=(proc.stdout or "")[-_OUTPUT_TAIL:],
        stderr=(proc.stderr or "")[-_OUTPUT_TAIL:],
        elapsed_ms=int((time.monotonic() - start) * 1000),
    )
    if not result.ok:
        logger.debug("Command exited %s: %s", result.returncode, result.stderr.strip())
    return result
