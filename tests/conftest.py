"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from layerprov.adapters.mock import MockIdentityBackend, MockPackageManager
from layerprov.adapters.registry import BackendRegistry
from layerprov.core.models.environment import Environment
from layerprov.core.models.identity import Identity

NATIVE_DEPS = ["pkg-config", "libdbus-1-dev", "libasound-dev", "libgtk-3-dev"]

DEVCONTAINER_YML = textwrap.dedent("""\
    name: devcontainer-native-deps
    base_image: docker.io/sploders101/devcontainer:latest
    package_manager: apt
    initial_identity: root:root
    identities: [root:root, dev:dev]
    steps:
      - name: native-deps
        identity: root:root
        post_identity: dev:dev
        actions:
          - install: [pkg-config, libdbus-1-dev, libasound-dev, libgtk-3-dev]
""")


@pytest.fixture
def identities() -> MockIdentityBackend:
    """Identity backend knowing root:root and dev:dev."""
    return MockIdentityBackend(["dev:dev"])


@pytest.fixture
def packages() -> MockPackageManager:
    """Package manager whose catalog is the usual desktop/audio set."""
    return MockPackageManager(
        ["dbus", "alsa", "gtk", *NATIVE_DEPS],
        manager_name="apt",
    )


@pytest.fixture
def backends(identities: MockIdentityBackend, packages: MockPackageManager) -> BackendRegistry:
    return BackendRegistry(identity=identities, package_managers=[packages], mock_mode=True)


@pytest.fixture
def env() -> Environment:
    """Fresh environment: root, nothing installed."""
    return Environment(name="test", current_identity=Identity.parse("root"))


@pytest.fixture
def step_file_path(tmp_path: Path) -> Path:
    """A provision.yml mirroring the devcontainer layer."""
    path = tmp_path / "provision.yml"
    path.write_text(DEVCONTAINER_YML)
    return path
