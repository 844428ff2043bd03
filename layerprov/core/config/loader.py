"""
Configuration loader — reads provision.yml into a StepFile.

This is the primary entry point for loading step declarations. It reads
YAML, validates against the Pydantic models, and returns a typed
StepFile.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from layerprov.core.models.step import StepFile

logger = logging.getLogger(__name__)

# Default step file name
STEP_FILE_NAME = "provision.yml"


class ConfigError(Exception):
    """Raised when the step file is invalid or missing."""


def find_step_file(start_dir: Path | None = None) -> Path | None:
    """Search for provision.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to provision.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / STEP_FILE_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def read_step_data(path: Path) -> dict:
    """Read the raw YAML mapping from a step file.

    Raises:
        ConfigError: If the file is unreadable or not a YAML mapping.
    """
    if not path.is_file():
        raise ConfigError(f"Step file not found: {path}")

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    return data


def merge_provision_section(data: dict) -> dict:
    """Flatten an optional ``provision:`` wrapper into the top level.

    Top-level keys win over keys inside the wrapper.
    """
    section = data.get("provision")
    if not isinstance(section, dict):
        return data
    return {**section, **{k: v for k, v in data.items() if k != "provision"}}


def load_step_file(path: Path | None = None) -> StepFile:
    """Load and validate a step file.

    Args:
        path: Explicit path to provision.yml. If None, searches upward.

    Returns:
        Validated StepFile model.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_step_file()

    if path is None:
        raise ConfigError(f"No {STEP_FILE_NAME} found. Specify one with --config.")

    logger.debug("Loading step file from %s", path)
    data = merge_provision_section(read_step_data(path))

    try:
        step_file = StepFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid step file {path}: {e}") from e

    logger.info("Loaded step file '%s' with %d step(s)", step_file.name, len(step_file.steps))
    return step_file


def state_root(config_path: Path) -> Path:
    """Directory holding the step file (and its .state/ directory)."""
    return config_path.parent.resolve()
