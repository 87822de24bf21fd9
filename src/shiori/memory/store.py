"""Durable storage layer for fingerprint cache blobs."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Type, TypeVar

from pydantic import ValidationError

from .schema import GlobalFileState, RecordModel, TestFileCache

DEFAULT_CACHE_DIR = Path(".shiori_cache")
GLOBAL_STATE_KEY = "file"
LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=RecordModel)


def cache_key_for(test_file_path: str | Path) -> str:
    """Return the blob key for the cache of ``test_file_path``."""
    absolute = os.path.abspath(os.fspath(test_file_path))
    return hashlib.md5(absolute.encode("utf-8")).hexdigest()


class FingerprintStore:
    """JSON blob store keyed by short identifiers inside a cache directory."""

    @staticmethod
    def _is_writable(path: Path) -> bool:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError:
            return False
        return os.access(path, os.W_OK)

    @staticmethod
    def _fallback_dir(source: Path) -> Path:
        digest = hashlib.sha1(source.as_posix().encode("utf-8")).hexdigest()[:12]
        return Path(tempfile.gettempdir()) / "shiori" / "cache" / digest

    @classmethod
    def _resolve_cache_dir(cls, requested: Path) -> Path:
        resolved = requested.resolve()
        if cls._is_writable(resolved):
            return resolved
        fallback = cls._fallback_dir(resolved)
        if not cls._is_writable(fallback):
            raise OSError(f"Unable to locate writable cache directory (attempted {requested})")
        return fallback

    def __init__(self, cache_dir: Path | str = DEFAULT_CACHE_DIR) -> None:
        requested = Path(cache_dir)
        self.cache_dir = self._resolve_cache_dir(requested)
        if self.cache_dir != requested.resolve():
            LOGGER.warning(
                "Cache directory %s is not writable; using fallback %s",
                requested,
                self.cache_dir,
            )

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def read(self, key: str) -> dict:
        """Return the blob stored under ``key``; an empty mapping when absent or unreadable."""
        path = self.path_for(key)
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as error:
            LOGGER.warning("Ignoring unreadable cache blob %s: %s", path, error)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Ignoring cache blob %s: top level is not a mapping", path)
            return {}
        return data

    def write(self, key: str, blob: dict) -> None:
        """Persist ``blob`` under ``key``, replacing any previous blob."""
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(blob, handle)
        except OSError as error:
            LOGGER.warning("Failed to write cache blob %s: %s", path, error)

    def _read_model(self, key: str, model: Type[ModelT]) -> ModelT:
        data = self.read(key)
        if not data:
            return model()
        try:
            return model.model_validate(data)
        except ValidationError as error:
            LOGGER.warning("Discarding malformed cache blob %s: %s", self.path_for(key), error)
            return model()

    def load_global_state(self) -> GlobalFileState:
        return self._read_model(GLOBAL_STATE_KEY, GlobalFileState)

    def save_global_state(self, state: GlobalFileState) -> None:
        self.write(GLOBAL_STATE_KEY, state.model_dump(mode="json"))

    def load_test_file(self, test_file_path: str) -> TestFileCache:
        cache = self._read_model(cache_key_for(test_file_path), TestFileCache)
        if not cache.path:
            cache.path = test_file_path
        return cache

    def save_test_file(self, cache: TestFileCache) -> None:
        self.write(cache_key_for(cache.path), cache.model_dump(mode="json"))

    def iter_test_files(self) -> list[TestFileCache]:
        """Return every per-test-file blob found in the cache directory."""
        caches: list[TestFileCache] = []
        for path in sorted(self.cache_dir.glob("*.json")):
            if path.stem == GLOBAL_STATE_KEY:
                continue
            cache = self._read_model(path.stem, TestFileCache)
            if cache.path:
                caches.append(cache)
        return caches


__all__ = [
    "DEFAULT_CACHE_DIR",
    "FingerprintStore",
    "GLOBAL_STATE_KEY",
    "cache_key_for",
]
