"""Sequence tracing, skip decisions and cache persistence around test units."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from .config import ShioriConfig
from .decision import SkipDecision, evaluate
from .memory.fingerprints import DependencyCache
from .memory.schema import TestUnitCacheEntry, TestUnitKey
from .memory.store import FingerprintStore
from .tools.digest import ContentDigester
from .tools.environment import (
    LibraryVersionProvider,
    environment_marker,
    installed_library_versions,
    snapshot_id,
)
from .tools.tracer import ExecutionTracer, SourceFilter

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TestUnit:
    """A test unit as seen by the orchestrator.

    ``cacheable`` is ``False`` when the test explicitly opted out of reusing
    cached outcomes.
    """

    __test__ = False

    key: TestUnitKey
    cacheable: bool = True

    @property
    def source_path(self) -> str:
        return self.key.file_path


@dataclass(slots=True)
class UnitOutcome:
    """What happened to a unit handed to :meth:`Orchestrator.execute`."""

    skipped: bool
    passed: bool
    entry: Optional[TestUnitCacheEntry] = None


@dataclass(slots=True)
class SessionStats:
    """Counters reported at the end of a suite run."""

    cached: int = 0
    executed: int = 0
    decisions: Dict[str, int] = field(default_factory=dict)

    def count(self, label: str) -> None:
        self.decisions[label] = self.decisions.get(label, 0) + 1


class Orchestrator:
    """Explicit per-session context owning the fingerprint cache."""

    def __init__(
        self,
        cache: DependencyCache,
        *,
        versions: Mapping[str, str],
        environment: str,
        source_filter: Optional[SourceFilter] = None,
    ) -> None:
        self.cache = cache
        self.versions: Dict[str, str] = dict(versions)
        self.environment = environment
        self.library_snapshot = snapshot_id(self.versions)
        self.source_filter = source_filter or SourceFilter.default()
        self.stats = SessionStats()
        self._finished = False

    @classmethod
    def start(
        cls,
        config: ShioriConfig,
        root: Path,
        *,
        versions_provider: LibraryVersionProvider = installed_library_versions,
        environment: Optional[str] = None,
        store: Optional[FingerprintStore] = None,
    ) -> "Orchestrator":
        """Snapshot the environment and load the cache at suite start."""
        versions = dict(versions_provider())
        store = store or FingerprintStore(config.resolve_cache_dir(root))
        cache = DependencyCache.load(
            store,
            digester=ContentDigester(),
            max_library_snapshots=config.max_library_snapshots,
        )
        LOGGER.debug(
            "Started shiori session with %d librar(ies) in %s",
            len(versions),
            store.cache_dir,
        )
        return cls(
            cache,
            versions=versions,
            environment=environment or environment_marker(),
            source_filter=SourceFilter.default(config.exclude),
        )

    def decide(self, unit: TestUnit) -> SkipDecision:
        file_cache = self.cache.test_file(unit.source_path)
        return evaluate(
            unit.key,
            file_cache,
            file_records=self.cache.file_records,
            library_snapshots=self.cache.library_snapshots,
            current_versions=self.versions,
            environment=self.environment,
        )

    def should_skip(self, unit: TestUnit) -> bool:
        """Return ``True`` when ``unit`` may be reported as a cached success."""
        decision = self.decide(unit)
        LOGGER.debug("%s:%s -> %s", unit.source_path, unit.key.unit_id, decision.describe())
        if not decision.skip:
            self.stats.count(decision.failed_check.value if decision.failed_check else "run")
            return False
        if not unit.cacheable:
            LOGGER.debug("%s:%s opted out of caching", unit.source_path, unit.key.unit_id)
            self.stats.count("opted-out")
            return False
        self.stats.count("skip")
        self.stats.cached += 1
        return True

    def tracer(self) -> ExecutionTracer:
        return ExecutionTracer(self.source_filter)

    def complete(self, unit: TestUnit, tracer: ExecutionTracer, *, passed: bool) -> TestUnitCacheEntry:
        """Record the outcome and traced dependencies of a unit that ran."""
        tracer.stop()
        self.stats.executed += 1
        return self.cache.record(
            unit.key,
            passed=passed,
            files=tracer.dependent_files(unit.source_path),
            environment=self.environment,
            library_snapshot=self.library_snapshot,
        )

    def execute(self, unit: TestUnit, work: Callable[[], object]) -> UnitOutcome:
        """Skip ``unit`` or run ``work`` under the tracer and record the outcome.

        An exception raised by ``work`` is recorded as a failure and re-raised.
        """
        if self.should_skip(unit):
            return UnitOutcome(skipped=True, passed=True, entry=self.cache.entry(unit.key))

        tracer = self.tracer()
        passed = False
        try:
            with tracer.tracing():
                work()
            passed = True
        finally:
            entry = self.complete(unit, tracer, passed=passed)
        return UnitOutcome(skipped=False, passed=passed, entry=entry)

    def finish(self) -> None:
        """Persist the session's cache updates; later calls are no-ops."""
        if self._finished:
            return
        self._finished = True
        self.cache.remember_libraries(self.library_snapshot, self.versions)
        self.cache.flush()


__all__ = ["Orchestrator", "SessionStats", "TestUnit", "UnitOutcome"]
