"""In-memory dependency fingerprint cache shared by one suite run."""

from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, List, Mapping, Optional, Set

from ..tools.digest import ContentDigester
from .schema import (
    ChangeState,
    FileRecord,
    GlobalFileState,
    TestFileCache,
    TestUnitCacheEntry,
    TestUnitKey,
)
from .store import FingerprintStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_LIBRARY_SNAPSHOTS = 16


class DependencyCache:
    """Global file-state table plus lazily loaded per-test-file caches.

    File records for every previously persisted path are computed once when
    the cache is loaded; files first seen during the run are added lazily with
    :attr:`ChangeState.FIRST`. Nothing is written back until :meth:`flush`.
    """

    def __init__(
        self,
        store: FingerprintStore,
        *,
        digester: Optional[ContentDigester] = None,
        file_records: Optional[Dict[str, FileRecord]] = None,
        library_snapshots: Optional[Dict[str, Dict[str, str]]] = None,
        max_library_snapshots: int = DEFAULT_MAX_LIBRARY_SNAPSHOTS,
    ) -> None:
        self.store = store
        self.digester = digester or ContentDigester()
        self.file_records: Dict[str, FileRecord] = dict(file_records or {})
        self.library_snapshots: Dict[str, Dict[str, str]] = dict(library_snapshots or {})
        self.max_library_snapshots = max(1, max_library_snapshots)
        self._test_files: Dict[str, TestFileCache] = {}
        self._dirty: Set[str] = set()

    @classmethod
    def load(
        cls,
        store: FingerprintStore,
        *,
        digester: Optional[ContentDigester] = None,
        max_library_snapshots: int = DEFAULT_MAX_LIBRARY_SNAPSHOTS,
    ) -> "DependencyCache":
        """Build the session cache from the persisted global state."""
        digester = digester or ContentDigester()
        state = store.load_global_state()
        records: Dict[str, FileRecord] = {}
        for path, persisted in state.files.items():
            current = digester.digest(path)
            unchanged = current is not None and current == persisted
            records[path] = FileRecord(
                path=path,
                digest=current,
                changed=ChangeState.UNCHANGED if unchanged else ChangeState.CHANGED,
            )
        changed = sum(1 for record in records.values() if record.changed is not ChangeState.UNCHANGED)
        LOGGER.debug("Loaded %d tracked file(s), %d changed since last run", len(records), changed)
        return cls(
            store,
            digester=digester,
            file_records=records,
            library_snapshots={key: dict(value) for key, value in state.libraries.items()},
            max_library_snapshots=max_library_snapshots,
        )

    def test_file(self, test_file_path: str) -> TestFileCache:
        """Return the cache of ``test_file_path``, loading it on first use."""
        key = os.path.abspath(test_file_path)
        cache = self._test_files.get(key)
        if cache is None:
            cache = self.store.load_test_file(key)
            self._test_files[key] = cache
        return cache

    def entry(self, key: TestUnitKey) -> Optional[TestUnitCacheEntry]:
        return self.test_file(key.file_path).get(key)

    def file_record(self, path: str) -> FileRecord:
        """Return the record of ``path``, hashing it once if it was never seen."""
        absolute = os.path.abspath(path)
        record = self.file_records.get(absolute)
        if record is None:
            record = FileRecord(
                path=absolute,
                digest=self.digester.digest(absolute),
                changed=ChangeState.FIRST,
            )
            self.file_records[absolute] = record
        return record

    def record(
        self,
        key: TestUnitKey,
        *,
        passed: bool,
        files: Iterable[str],
        environment: str,
        library_snapshot: str,
    ) -> TestUnitCacheEntry:
        """Store the outcome and fingerprint of a unit that just ran."""
        paths = {os.path.abspath(path) for path in files}
        paths.add(os.path.abspath(key.file_path))
        fingerprint: Dict[str, str] = {}
        for path in sorted(paths):
            record = self.file_record(path)
            fingerprint[path] = record.digest or ""
        entry = TestUnitCacheEntry(
            environment=environment,
            result=passed,
            library_snapshot=library_snapshot,
            files=fingerprint,
        )
        cache = self.test_file(key.file_path)
        cache.put(key, entry)
        self._dirty.add(os.path.abspath(key.file_path))
        return entry

    def remember_libraries(self, snapshot: str, versions: Mapping[str, str]) -> None:
        """Make ``snapshot`` the most recent library snapshot, pruning the oldest."""
        self.library_snapshots.pop(snapshot, None)
        self.library_snapshots[snapshot] = dict(versions)
        while len(self.library_snapshots) > self.max_library_snapshots:
            oldest = next(iter(self.library_snapshots))
            del self.library_snapshots[oldest]

    @property
    def dirty_test_files(self) -> List[str]:
        return sorted(self._dirty)

    def global_state(self) -> GlobalFileState:
        files = {
            path: record.digest
            for path, record in sorted(self.file_records.items())
            if record.digest is not None
        }
        return GlobalFileState(libraries=dict(self.library_snapshots), files=files)

    def flush(self) -> None:
        """Persist every mutated test-file cache and the global file state."""
        for path in self.dirty_test_files:
            self.store.save_test_file(self._test_files[path])
        self.store.save_global_state(self.global_state())
        LOGGER.debug(
            "Flushed %d test file cache(s) and %d tracked file(s)",
            len(self._dirty),
            len(self.file_records),
        )
        self._dirty.clear()


__all__ = ["DEFAULT_MAX_LIBRARY_SNAPSHOTS", "DependencyCache"]
