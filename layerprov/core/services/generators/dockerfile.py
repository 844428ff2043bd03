"""
Dockerfile generator — render a step file as a container image layer.

Each step becomes a ``USER`` switch followed by one ``RUN`` per install
action, and a final ``USER`` for the post-condition identity. Redundant
``USER`` lines (identity already active) are dropped.

Only package managers that can express their install as a shell
command are renderable.
"""

from __future__ import annotations

from layerprov.adapters.base import PackageManager
from layerprov.adapters.packages.apt import AptPackageManager
from layerprov.core.models.identity import Identity
from layerprov.core.models.step import StepFile


class RenderError(Exception):
    """Raised when a step file cannot be expressed as a Dockerfile."""


_RENDERERS: dict[str, type[PackageManager]] = {
    "apt": AptPackageManager,
}


def _renderer(name: str) -> PackageManager:
    cls = _RENDERERS.get(name)
    if cls is None:
        raise RenderError(f"Package manager '{name}' cannot be rendered to a Dockerfile")
    return cls()


def _user_line(identity: Identity) -> str:
    return f"USER {identity}"


def render_dockerfile(step_file: StepFile) -> str:
    """Render ``step_file`` as Dockerfile text.

    Raises:
        RenderError: no base image, or an unrenderable package manager.
    """
    if not step_file.base_image:
        raise RenderError("Step file has no base_image; a Dockerfile needs FROM")

    lines = [f"FROM {step_file.base_image}"]
    current = step_file.initial_identity

    def switch(identity: Identity) -> None:
        nonlocal current
        if identity != current:
            lines.append(_user_line(identity))
            current = identity

    for step in step_file.steps:
        # A USER is always emitted for a step's identity, since the base
        # image's own USER is unknown here
        if step is step_file.steps[0] or step.identity != current:
            lines.append(_user_line(step.identity))
            current = step.identity

        for action in step.actions:
            if action.kind == "switch_identity":
                switch(action.identity)
                continue
            manager = _renderer(action.manager or step_file.package_manager)
            command = manager.install_command(
                action.packages,
                refresh_index=action.refresh_index,
                clean_cache=action.clean_cache,
            )
            lines.append("RUN " + command.replace(" && ", " \\\n  && "))

        switch(step.post_identity)

    return "\n".join(lines) + "\n"
