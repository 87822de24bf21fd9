"""Decide whether a test unit may reuse its cached outcome.

The checks run in a fixed order and stop at the first failure; any failure
means the unit must run. Every cache miss or unreadable input therefore
degrades to re-running the test rather than trusting stale state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .memory.schema import ChangeState, FileRecord, TestFileCache, TestUnitKey

LOGGER = logging.getLogger(__name__)


class SkipCheck(str, Enum):
    """Checks evaluated before a cached outcome may be reused."""

    LIBRARIES = "libraries"
    FILE_ENTRY = "file-entry"
    UNIT_ENTRY = "unit-entry"
    ENVIRONMENT = "environment"
    OUTCOME = "outcome"
    DEPENDENCIES = "dependencies"


@dataclass(frozen=True, slots=True)
class SkipDecision:
    """Result of evaluating the skip checks for one unit."""

    skip: bool
    failed_check: Optional[SkipCheck] = None
    detail: str = ""

    def __bool__(self) -> bool:
        return self.skip

    def describe(self) -> str:
        if self.skip:
            return "skip: cached success is still valid"
        return f"run: {self.failed_check.value if self.failed_check else 'unknown'} ({self.detail})"


def _run(check: SkipCheck, detail: str) -> SkipDecision:
    return SkipDecision(skip=False, failed_check=check, detail=detail)


def evaluate(
    key: TestUnitKey,
    file_cache: Optional[TestFileCache],
    *,
    file_records: Mapping[str, FileRecord],
    library_snapshots: Mapping[str, Mapping[str, str]],
    current_versions: Mapping[str, str],
    environment: str,
) -> SkipDecision:
    """Evaluate every skip check for ``key`` and report the first failure."""
    entry = file_cache.get(key) if file_cache is not None else None

    if entry is not None:
        recorded = library_snapshots.get(entry.library_snapshot or "")
        if recorded is None:
            return _run(SkipCheck.LIBRARIES, "library snapshot of the last run is unknown")
        for name, version in recorded.items():
            current = current_versions.get(name)
            if current != version:
                return _run(SkipCheck.LIBRARIES, f"{name} {version} -> {current or 'missing'}")

    if file_cache is None or not file_cache.units:
        return _run(SkipCheck.FILE_ENTRY, "test file has never been cached")
    if entry is None:
        return _run(SkipCheck.UNIT_ENTRY, f"no cached run for {key.unit_id}")
    if entry.environment != environment:
        return _run(SkipCheck.ENVIRONMENT, f"{entry.environment} -> {environment}")
    if entry.result is not True:
        return _run(SkipCheck.OUTCOME, "last run did not pass")

    for path, recorded_digest in entry.files.items():
        record = file_records.get(path)
        if record is None:
            return _run(SkipCheck.DEPENDENCIES, f"{path} is not tracked")
        if record.changed is not ChangeState.UNCHANGED:
            return _run(SkipCheck.DEPENDENCIES, f"{path} is {record.changed.value}")
        if record.digest != recorded_digest:
            return _run(SkipCheck.DEPENDENCIES, f"{path} differs from the recorded digest")

    return SkipDecision(skip=True)


def should_skip(
    key: TestUnitKey,
    file_cache: Optional[TestFileCache],
    *,
    file_records: Mapping[str, FileRecord],
    library_snapshots: Mapping[str, Mapping[str, str]],
    current_versions: Mapping[str, str],
    environment: str,
) -> bool:
    decision = evaluate(
        key,
        file_cache,
        file_records=file_records,
        library_snapshots=library_snapshots,
        current_versions=current_versions,
        environment=environment,
    )
    LOGGER.debug("%s:%s -> %s", key.file_path, key.unit_id, decision.describe())
    return decision.skip


__all__ = ["SkipCheck", "SkipDecision", "evaluate", "should_skip"]
