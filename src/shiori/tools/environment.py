"""Snapshots of the runtime environment that cached outcomes depend on."""

from __future__ import annotations

import hashlib
import json
import platform
import re
import sys
from importlib import metadata
from typing import Callable, Dict, Mapping

LibraryVersions = Dict[str, str]
LibraryVersionProvider = Callable[[], Mapping[str, str]]

_NAME_NORMALISE_RE = re.compile(r"[-_.]+")


def normalise_library_name(name: str) -> str:
    """Normalise a distribution name the way package indexes compare them."""
    return _NAME_NORMALISE_RE.sub("-", name).lower()


def installed_library_versions() -> LibraryVersions:
    """Return ``{name: version}`` for every distribution visible to the interpreter."""
    versions: LibraryVersions = {}
    for distribution in metadata.distributions():
        name = distribution.metadata.get("Name") if distribution.metadata else None
        if not name:
            continue
        key = normalise_library_name(name)
        # First entry on sys.path wins, matching import resolution.
        versions.setdefault(key, distribution.version)
    return dict(sorted(versions.items()))


def environment_marker() -> str:
    """Identify the interpreter a cache entry was recorded under."""
    implementation = platform.python_implementation().lower()
    version = ".".join(str(part) for part in sys.version_info[:3])
    return f"{implementation}-{version}"


def snapshot_id(versions: Mapping[str, str]) -> str:
    """Return a stable identifier for a library version snapshot."""
    payload = json.dumps(dict(sorted(versions.items())), separators=(",", ":"))
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]


__all__ = [
    "LibraryVersionProvider",
    "LibraryVersions",
    "environment_marker",
    "installed_library_versions",
    "normalise_library_name",
    "snapshot_id",
]
