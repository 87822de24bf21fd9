"""Content digests for change detection of tracked source files."""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, Optional

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


def file_digest(path: str | Path) -> Optional[str]:
    """Return the MD5 hex digest of ``path``'s bytes, or ``None`` if unreadable."""
    digest = hashlib.md5()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as error:
        LOGGER.debug("Unable to digest %s: %s", path, error)
        return None
    return digest.hexdigest()


class ContentDigester:
    """Read-through memo of file digests, valid for a single suite run."""

    def __init__(self) -> None:
        self._memo: Dict[str, Optional[str]] = {}

    def digest(self, path: str | Path) -> Optional[str]:
        key = os.path.abspath(os.fspath(path))
        if key not in self._memo:
            self._memo[key] = file_digest(key)
        return self._memo[key]


__all__ = ["ContentDigester", "file_digest"]
