"""
Environment snapshot — atomic read/write of the provisioned Environment.

The snapshot is stored as JSON in ``.state/environment.json`` beside the
step file. Writes are atomic (write to temp file, then rename) so a
crash mid-write never leaves a half-written snapshot.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from layerprov.core.models.environment import Environment

logger = logging.getLogger(__name__)

# Default snapshot path (relative to the step file's directory)
DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "environment.json"
MOCK_STATE_FILE = "environment.mock.json"


def default_state_path(state_root: Path, mock: bool = False) -> Path:
    """Get the default snapshot path for a step file directory.

    Mock runs keep their own snapshot so rehearsals never leak into the
    record of the real environment.
    """
    name = MOCK_STATE_FILE if mock else DEFAULT_STATE_FILE
    return state_root / DEFAULT_STATE_DIR / name


def load_environment(path: Path) -> Environment | None:
    """Load an Environment snapshot.

    Returns:
        The Environment, or None if the file is missing or unreadable
        (the caller then starts from the base state).
    """
    if not path.is_file():
        logger.info("No environment snapshot at %s; starting from base state", path)
        return None

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        env = Environment.model_validate(data)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt snapshot %s: %s; starting from base state", path, e)
        return None
    except (OSError, ValueError) as e:
        logger.warning("Cannot load snapshot %s: %s; starting from base state", path, e)
        return None

    logger.debug("Loaded environment from %s (updated_at=%s)", path, env.updated_at)
    return env


def save_environment(env: Environment, path: Path) -> None:
    """Save an Environment snapshot (atomic write)."""
    path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(env.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".env_", suffix=".tmp")
    os.close(fd)
    tmp = Path(tmp_path)
    try:
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(path)
        logger.debug("Environment saved to %s", path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to save environment to %s: %s", path, e)
        raise


def delete_environment(path: Path) -> bool:
    """Remove a snapshot. Returns whether one existed."""
    if not path.is_file():
        return False
    path.unlink()
    logger.info("Removed environment snapshot %s", path)
    return True
