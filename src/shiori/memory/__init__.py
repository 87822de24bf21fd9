"""Persisted fingerprint records and the session cache built from them."""

from .fingerprints import DependencyCache
from .schema import ChangeState, FileRecord, GlobalFileState, TestFileCache, TestUnitCacheEntry, TestUnitKey
from .store import FingerprintStore

__all__ = [
    "ChangeState",
    "DependencyCache",
    "FileRecord",
    "FingerprintStore",
    "GlobalFileState",
    "TestFileCache",
    "TestUnitCacheEntry",
    "TestUnitKey",
]
