"""
Tests for backends — mocks, registry, command runner, apt, posix identity.
"""

import subprocess

import pytest

from layerprov.adapters.mock import MockIdentityBackend, MockPackageManager
from layerprov.adapters.packages import apt as apt_module
from layerprov.adapters.packages.apt import AptPackageManager, parse_reverse_provides
from layerprov.adapters.registry import BackendRegistry, mock_registry
from layerprov.adapters.shell import command as command_module
from layerprov.adapters.shell.command import CommandResult, run_command, sudo_prefix
from layerprov.adapters.system import accounts as accounts_module
from layerprov.adapters.system.accounts import PosixIdentityBackend
from layerprov.core.errors import (
    IdentitySwitchError,
    PackageManagerError,
    UnresolvedPackageError,
)
from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import Identity
from layerprov.core.models.step import StepFile

ROOT = Identity.parse("root")
DEV = Identity.parse("dev")

# ── Mock Backends ────────────────────────────────────────────────────


class TestMockIdentityBackend:
    def test_root_always_known(self):
        assert MockIdentityBackend().identity_exists(ROOT)

    def test_switch(self):
        backend = MockIdentityBackend(["dev"])
        env = Environment()
        backend.switch_identity(env, DEV)
        assert env.current_identity == DEV
        assert backend.call_log == [DEV]

    def test_unknown_identity(self):
        backend = MockIdentityBackend()
        env = Environment()
        with pytest.raises(IdentitySwitchError, match="Unknown identity"):
            backend.switch_identity(env, DEV)
        assert env.current_identity == ROOT

    def test_denied_identity(self):
        backend = MockIdentityBackend()
        backend.deny("dev")
        assert backend.identity_exists(DEV)
        with pytest.raises(IdentitySwitchError, match="Not permitted"):
            backend.switch_identity(Environment(), DEV)


class TestMockPackageManager:
    def test_empty_catalog_resolves_everything(self):
        assert MockPackageManager().is_known("anything")

    def test_ensure_installed(self):
        manager = MockPackageManager(["gtk", "alsa"])
        env = Environment()
        receipt = manager.ensure_installed(env, ["gtk", "alsa"], action_id="a")
        assert receipt.ok
        assert receipt.metadata["missing"] == ["alsa", "gtk"]
        assert env.packages == {"gtk", "alsa"}

    def test_partial_already_installed(self):
        manager = MockPackageManager()
        env = Environment(packages=["gtk"])
        manager.ensure_installed(env, ["gtk", "alsa"])
        assert manager.install_log == [["alsa"]]

    def test_unknown(self):
        manager = MockPackageManager(["gtk"], manager_name="apt")
        with pytest.raises(UnresolvedPackageError, match="by apt: nope"):
            manager.ensure_installed(Environment(), ["gtk", "nope"])

    def test_unknown_in_dry_run(self):
        # The catalog has no index to refresh, so it stays authoritative
        manager = MockPackageManager(["gtk"])
        with pytest.raises(UnresolvedPackageError):
            manager.ensure_installed(Environment(), ["nope"], dry_run=True)

    def test_reset(self):
        manager = MockPackageManager()
        manager.set_failure("gtk")
        manager.ensure_installed(Environment(), ["alsa"])
        manager.reset()
        assert manager.install_count == 0
        manager.ensure_installed(Environment(), ["gtk"])


# ── Registry ─────────────────────────────────────────────────────────


class TestBackendRegistry:
    def test_register_and_resolve(self):
        apt = MockPackageManager(manager_name="apt")
        other = MockPackageManager(manager_name="other")
        registry = BackendRegistry(MockIdentityBackend(), [apt, other])
        assert registry.resolve_manager() is apt
        assert registry.resolve_manager("other") is other
        assert registry.list_managers() == ["apt", "other"]

    def test_unregister(self):
        registry = BackendRegistry(MockIdentityBackend(), [MockPackageManager(manager_name="apt")])
        registry.unregister("apt")
        with pytest.raises(PackageManagerError):
            registry.resolve_manager()

    def test_backend_status(self):
        registry = BackendRegistry(
            MockIdentityBackend(),
            [MockPackageManager(manager_name="apt", available=False)],
        )
        status = registry.backend_status()
        assert status["identity"]["type"] == "MockIdentityBackend"
        assert status["apt"]["available"] is False
        assert status["apt"]["default"] is True

    def test_mock_registry_from_declared_identities(self):
        step_file = StepFile.model_validate(
            {
                "identities": ["dev:dev"],
                "known_packages": ["gtk"],
                "steps": [{"name": "s", "identity": "ghost"}],
            }
        )
        registry = mock_registry(step_file)
        assert registry.mock_mode
        assert registry.identity.identity_exists(DEV)
        assert not registry.identity.identity_exists(Identity.parse("ghost"))
        assert not registry.resolve_manager().is_known("alsa")

    def test_mock_registry_infers_identities(self):
        step_file = StepFile.model_validate(
            {
                "steps": [
                    {
                        "name": "s",
                        "identity": "root",
                        "post_identity": "dev",
                        "actions": [
                            {"switch": "builder"},
                            {"kind": "install", "packages": ["x"], "manager": "pip"},
                        ],
                    }
                ]
            }
        )
        registry = mock_registry(step_file)
        assert registry.identity.identity_exists(DEV)
        assert registry.identity.identity_exists(Identity.parse("builder"))
        assert registry.list_managers() == ["apt", "pip"]


# ── Command Runner ───────────────────────────────────────────────────


class TestCommandRunner:
    def test_no_prefix_for_process_identity(self, monkeypatch):
        monkeypatch.setattr(command_module, "process_identity", lambda: ROOT)
        assert sudo_prefix(ROOT) == []
        assert sudo_prefix(None) == []

    def test_sudo_prefix_for_other_identity(self, monkeypatch):
        monkeypatch.setattr(command_module, "process_identity", lambda: ROOT)
        assert sudo_prefix(Identity.parse("dev:staff")) == [
            "sudo", "-n", "-u", "dev", "-g", "staff", "--",
        ]

    def test_run_success(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs))
            return subprocess.CompletedProcess(cmd, 0, stdout="hello\n", stderr="")

        monkeypatch.setattr(command_module, "process_identity", lambda: ROOT)
        monkeypatch.setattr(command_module.subprocess, "run", fake_run)

        result = run_command(["echo", "hello"], identity=DEV, env_overrides={"X": "1"})
        assert result.ok
        assert result.stdout == "hello\n"
        cmd, kwargs = calls[0]
        assert cmd[:3] == ["sudo", "-n", "-u"]
        assert cmd[-2:] == ["echo", "hello"]
        assert kwargs["env"]["X"] == "1"

    def test_env_overrides_survive_sudo(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs))
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        monkeypatch.setattr(command_module, "process_identity", lambda: Identity.parse("vscode"))
        monkeypatch.setattr(command_module.subprocess, "run", fake_run)

        run_command(
            ["apt-get", "install", "-y", "gtk"],
            identity=ROOT,
            env_overrides={"DEBIAN_FRONTEND": "noninteractive"},
        )
        cmd, kwargs = calls[0]
        assert cmd == [
            "sudo", "-n", "-u", "root", "-g", "root", "--",
            "env", "DEBIAN_FRONTEND=noninteractive",
            "apt-get", "install", "-y", "gtk",
        ]
        assert kwargs["stdin"] is subprocess.DEVNULL

    def test_env_overrides_without_sudo(self, monkeypatch):
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs))
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        monkeypatch.setattr(command_module, "process_identity", lambda: ROOT)
        monkeypatch.setattr(command_module.subprocess, "run", fake_run)

        run_command(["apt-get", "update"], identity=ROOT, env_overrides={"X": "1"})
        cmd, kwargs = calls[0]
        assert cmd == ["apt-get", "update"]
        assert kwargs["env"]["X"] == "1"
        assert kwargs["stdin"] is subprocess.DEVNULL

    def test_run_failure(self, monkeypatch):
        monkeypatch.setattr(
            command_module.subprocess,
            "run",
            lambda cmd, **kw: subprocess.CompletedProcess(cmd, 100, stdout="", stderr="E: broken\n"),
        )
        result = run_command(["false"])
        assert not result.ok
        assert result.describe_failure() == "Command failed (exit 100): E: broken"

    def test_run_timeout(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr(command_module.subprocess, "run", fake_run)
        result = run_command(["sleep", "9"], timeout=1)
        assert not result.ok
        assert "timed out (1s)" in result.error

    def test_run_missing_binary(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(2, "No such file", cmd[0])

        monkeypatch.setattr(command_module.subprocess, "run", fake_run)
        result = run_command(["no-such-tool"])
        assert not result.ok
        assert result.error.startswith("Cannot execute no-such-tool")


# ── APT ──────────────────────────────────────────────────────────────

SHOWPKG_VIRTUAL = """\
Package: libasound-dev
Versions:

Reverse Depends:
  libsdl2-dev,libasound-dev
Dependencies:
Provides:
Reverse Provides:
libasound2-dev 1.2.8-1+b1 (= )
"""


class FakeApt:
    """Scripted stand-in for run_command as used by the apt backend."""

    def __init__(self, installed=(), available=(), virtual=None, fail_on=None):
        self.installed = set(installed)
        self.available = set(available)
        self.virtual = virtual or {}
        self.fail_on = fail_on
        self.calls = []

    def __call__(self, cmd, identity=None, timeout=0, env_overrides=None, cwd=None):
        self.calls.append((cmd, identity))
        if self.fail_on and cmd[:2] == self.fail_on:
            return CommandResult(cmd=cmd, returncode=100, stderr="E: Could not get lock\n")
        if cmd[0] == "dpkg-query":
            pkg = cmd[-1]
            if pkg in self.installed:
                return CommandResult(cmd=cmd, returncode=0, stdout="install ok installed")
            return CommandResult(cmd=cmd, returncode=1, stderr="no packages found")
        if cmd[:2] == ["apt-cache", "policy"]:
            pkg = cmd[-1]
            candidate = "1.0" if pkg in self.available else "(none)"
            return CommandResult(cmd=cmd, returncode=0, stdout=f"{pkg}:\n  Candidate: {candidate}\n")
        if cmd[:2] == ["apt-cache", "showpkg"]:
            providers = self.virtual.get(cmd[-1], [])
            text = "Reverse Provides:\n" + "".join(f"{p} 1.0 (= )\n" for p in providers)
            return CommandResult(cmd=cmd, returncode=0, stdout=text)
        if cmd[:2] == ["apt-get", "install"]:
            self.installed.update(cmd[3:])
        return CommandResult(cmd=cmd, returncode=0, stdout="done\n")

    def commands(self, prefix):
        return [cmd for cmd, _ in self.calls if cmd[: len(prefix)] == prefix]


class TestAptPackageManager:
    def test_parse_reverse_provides(self):
        assert parse_reverse_provides(SHOWPKG_VIRTUAL) == ["libasound2-dev"]
        assert parse_reverse_provides("Package: x\n") == []

    def test_install_sequence(self, monkeypatch):
        fake = FakeApt(available=["pkg-config", "libgtk-3-dev"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        env = Environment()
        receipt = AptPackageManager().ensure_installed(env, ["pkg-config", "libgtk-3-dev"])

        assert receipt.ok
        assert fake.commands(["apt-get", "update"])
        install = fake.commands(["apt-get", "install"])[0]
        assert install == ["apt-get", "install", "-y", "libgtk-3-dev", "pkg-config"]
        assert fake.commands(["sh", "-c"]) == [["sh", "-c", "rm -rf /var/lib/apt/lists/*"]]
        assert env.packages == {"pkg-config", "libgtk-3-dev"}
        # Mutations run as the environment's identity
        assert all(identity == ROOT for cmd, identity in fake.calls if cmd[0] in ("apt-get", "sh"))

    def test_already_installed_skips_everything(self, monkeypatch):
        fake = FakeApt(installed=["pkg-config"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        receipt = AptPackageManager().ensure_installed(Environment(), ["pkg-config"])
        assert receipt.skipped
        assert not fake.commands(["apt-get"])

    def test_virtual_package(self, monkeypatch):
        fake = FakeApt(
            installed=["libasound2-dev"],
            virtual={"libasound-dev": ["libasound2-dev"]},
        )
        monkeypatch.setattr(apt_module, "run_command", fake)
        manager = AptPackageManager()
        assert manager.is_known("libasound-dev")
        assert manager.is_installed(Environment(), "libasound-dev")

    def test_unknown_package(self, monkeypatch):
        fake = FakeApt(available=["pkg-config"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        with pytest.raises(UnresolvedPackageError) as excinfo:
            AptPackageManager().ensure_installed(Environment(), ["pkg-config", "libfoo"])
        assert excinfo.value.packages == ["libfoo"]
        assert not fake.commands(["apt-get", "install"])

    def test_install_failure(self, monkeypatch):
        fake = FakeApt(available=["gtk"], fail_on=["apt-get", "install"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        with pytest.raises(PackageManagerError) as excinfo:
            AptPackageManager().ensure_installed(Environment(), ["gtk"])
        assert excinfo.value.returncode == 100
        assert "Could not get lock" in str(excinfo.value)

    def test_no_refresh_no_clean(self, monkeypatch):
        fake = FakeApt(available=["gtk"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        AptPackageManager().ensure_installed(
            Environment(), ["gtk"], refresh_index=False, clean_cache=False
        )
        assert not fake.commands(["apt-get", "update"])
        assert not fake.commands(["sh"])

    def test_dry_run(self, monkeypatch):
        fake = FakeApt(available=["gtk"])
        monkeypatch.setattr(apt_module, "run_command", fake)

        receipt = AptPackageManager().ensure_installed(Environment(), ["gtk"], dry_run=True)
        assert receipt.skipped
        assert not fake.commands(["apt-get"])

    def test_dry_run_with_emptied_index(self, monkeypatch):
        # Image built with the lists removed: nothing has a candidate yet
        fake = FakeApt(available=[])
        monkeypatch.setattr(apt_module, "run_command", fake)

        receipt = AptPackageManager().ensure_installed(
            Environment(), ["pkg-config"], dry_run=True
        )
        assert receipt.skipped
        assert receipt.output == (
            "[dry-run] would install: pkg-config; "
            "resolution pending index refresh: pkg-config"
        )
        assert receipt.metadata["unresolved"] == ["pkg-config"]
        assert not fake.commands(["apt-get"])

    def test_dry_run_without_refresh_still_rejects_unknown(self, monkeypatch):
        fake = FakeApt(available=[])
        monkeypatch.setattr(apt_module, "run_command", fake)

        with pytest.raises(UnresolvedPackageError):
            AptPackageManager().ensure_installed(
                Environment(), ["pkg-config"], dry_run=True, refresh_index=False
            )

    def test_install_command(self):
        text = AptPackageManager().install_command(["b", "a"])
        assert text.startswith("apt-get update && apt-get install -y")
        assert text.endswith("&& rm -rf /var/lib/apt/lists/*")


# ── POSIX Identity ───────────────────────────────────────────────────


class TestPosixIdentityBackend:
    def _patch_accounts(self, monkeypatch, users=("root", "dev"), groups=("root", "dev")):
        monkeypatch.setattr(accounts_module, "user_exists", lambda u: u in users)
        monkeypatch.setattr(accounts_module, "group_exists", lambda g: g in groups)

    def test_switch_as_root(self, monkeypatch):
        self._patch_accounts(monkeypatch)
        monkeypatch.setattr(accounts_module.os, "geteuid", lambda: 0)

        env = Environment()
        PosixIdentityBackend().switch_identity(env, DEV)
        assert env.current_identity == DEV

    def test_missing_user(self, monkeypatch):
        self._patch_accounts(monkeypatch)
        with pytest.raises(IdentitySwitchError, match="No such user: ghost"):
            PosixIdentityBackend().switch_identity(Environment(), Identity.parse("ghost"))

    def test_missing_group(self, monkeypatch):
        self._patch_accounts(monkeypatch, groups=("root",))
        with pytest.raises(IdentitySwitchError, match="No such group: dev"):
            PosixIdentityBackend().switch_identity(Environment(), DEV)

    def test_not_permitted(self, monkeypatch):
        self._patch_accounts(monkeypatch)
        monkeypatch.setattr(accounts_module.os, "geteuid", lambda: 1000)
        monkeypatch.setattr(accounts_module, "process_identity", lambda: DEV)
        monkeypatch.setattr(
            accounts_module,
            "run_command",
            lambda cmd, **kw: CommandResult(cmd=cmd, returncode=1, stderr="sudo: a password is required"),
        )
        env = Environment(current_identity=DEV)
        with pytest.raises(IdentitySwitchError, match="Not permitted"):
            PosixIdentityBackend().switch_identity(env, ROOT)
        assert env.current_identity == DEV

    def test_sudo_probe_cached(self, monkeypatch):
        self._patch_accounts(monkeypatch)
        monkeypatch.setattr(accounts_module.os, "geteuid", lambda: 1000)
        monkeypatch.setattr(accounts_module, "process_identity", lambda: DEV)
        probes = []

        def fake_run(cmd, **kw):
            probes.append(cmd)
            return CommandResult(cmd=cmd, returncode=0)

        monkeypatch.setattr(accounts_module, "run_command", fake_run)
        backend = PosixIdentityBackend()
        env = Environment(current_identity=DEV)
        backend.switch_identity(env, ROOT)
        backend.switch_identity(env, ROOT)
        assert env.current_identity == ROOT
        assert len(probes) == 1
