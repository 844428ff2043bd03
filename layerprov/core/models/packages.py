"""
PackageSet — a set of package identifiers.

Insertion order is irrelevant and duplicates collapse. Serialized as a
sorted list so snapshots and reports are stable across runs.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer


def normalize_packages(value: Any) -> set[str]:
    """Coerce a package declaration into a set of clean identifiers.

    Accepts a whitespace-separated string or any iterable of strings.
    Blank identifiers are rejected rather than silently dropped.
    """
    if value is None:
        return set()
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, Iterable):
        raise ValueError(f"Expected a list of package names, got {type(value).__name__}")

    packages: set[str] = set()
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Package name must be a string, got {item!r}")
        name = item.strip()
        if not name:
            raise ValueError("Package name must not be blank")
        if any(ch.isspace() for ch in name):
            raise ValueError(f"Package name must not contain whitespace: {name!r}")
        packages.add(name)
    return packages


def duplicate_packages(value: Iterable[str]) -> list[str]:
    """Names that appear more than once in a raw declaration."""
    seen: set[str] = set()
    dupes: set[str] = set()
    for item in value:
        name = item.strip()
        if name in seen:
            dupes.add(name)
        seen.add(name)
    return sorted(dupes)


PackageSet = Annotated[
    set[str],
    BeforeValidator(normalize_packages),
    PlainSerializer(lambda packages: sorted(packages), return_type=list[str]),
]
