"""
Logging configuration for the ``layerprov`` CLI.

``setup_logging`` runs once from main.py; modules just use
``logging.getLogger(__name__)``.

Level precedence:
    CLI flag  >  LAYERPROV_LOG_LEVEL env var  >  WARNING (default)

A log file can be added with LAYERPROV_LOG_FILE (and its own level with
LAYERPROV_LOG_FILE_LEVEL). File lines carry the operation id of the run
that produced them, so a shared log file lines up with the audit ledger.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

# Console formats by threshold: (max level, format, datefmt).
# WARNING and above print the bare message; INFO adds a clock;
# DEBUG adds level and source location.
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(message)s", "%H:%M:%S"),
]
_CONSOLE_DEFAULT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(operation_id)s] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_NO_OPERATION = "-"


class OperationFilter(logging.Filter):
    """Stamps every record with the current operation id."""

    def __init__(self) -> None:
        super().__init__()
        self.operation_id = _NO_OPERATION

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = self.operation_id
        return True


_operation_filter = OperationFilter()


@contextmanager
def operation_scope(operation_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``operation_id``."""
    previous = _operation_filter.operation_id
    _operation_filter.operation_id = operation_id
    try:
        yield
    finally:
        _operation_filter.operation_id = previous


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT
    for threshold, candidate_fmt, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            fmt, datefmt = candidate_fmt, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.addFilter(_operation_filter)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Install the console handler and, optionally, a file handler.

    ``log_file_level`` defaults to ``level``. The root logger is set to
    the lower of the two so neither handler is starved.
    """
    console_level = _level_number(level)
    handlers = [_console_handler(console_level)]
    root_level = console_level

    if log_file:
        file_level = _level_number(log_file_level) if log_file_level else console_level
        handlers.append(_file_handler(log_file, file_level))
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    logging.raiseExceptions = False


def _level_number(name: str | None) -> int:
    """Numeric level for ``name``; unknown names mean WARNING."""
    value = getattr(logging, (name or "").upper(), None)
    return value if isinstance(value, int) else logging.WARNING
