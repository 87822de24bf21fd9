"""Typed records persisted by the shiori fingerprint cache."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

_UNIT_KEY_RE = re.compile(r"^(?P<line>\d+)(?:\[(?P<variant>.*)\])?$")


class RecordModel(BaseModel):
    """Base Pydantic model for persisted cache documents."""

    model_config = ConfigDict(extra="ignore", frozen=False)


class ChangeState(str, Enum):
    """Per-session comparison of a file against its persisted digest."""

    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FIRST = "first"


@dataclass(slots=True)
class FileRecord:
    """Current digest of one tracked file and how it compares to the last run."""

    path: str
    digest: Optional[str]
    changed: ChangeState


@dataclass(frozen=True, slots=True)
class TestUnitKey:
    """Identity of one independently cacheable test.

    ``variant`` separates tests that share a declaration line, such as the
    parametrised instances of one test function.
    """

    __test__ = False

    file_path: str
    line_number: int
    variant: Optional[str] = None

    @property
    def unit_id(self) -> str:
        if self.variant is None:
            return str(self.line_number)
        return f"{self.line_number}[{self.variant}]"

    @classmethod
    def parse(cls, file_path: str, unit_id: str) -> "TestUnitKey":
        match = _UNIT_KEY_RE.match(unit_id)
        if match is None:
            raise ValueError(f"Malformed test unit id: {unit_id!r}")
        return cls(
            file_path=file_path,
            line_number=int(match.group("line")),
            variant=match.group("variant"),
        )


class TestUnitCacheEntry(RecordModel):
    """Outcome and dependency fingerprint of the last run of a test unit."""

    __test__ = False

    environment: str
    result: bool = False
    library_snapshot: Optional[str] = None
    files: Dict[str, str] = Field(default_factory=dict)

    @property
    def dependent_files(self) -> list[str]:
        return list(self.files)


class TestFileCache(RecordModel):
    """Every cached unit of one test file, persisted as a single blob."""

    __test__ = False

    path: str = ""
    units: Dict[str, TestUnitCacheEntry] = Field(default_factory=dict)

    def get(self, key: TestUnitKey) -> Optional[TestUnitCacheEntry]:
        return self.units.get(key.unit_id)

    def put(self, key: TestUnitKey, entry: TestUnitCacheEntry) -> None:
        self.units[key.unit_id] = entry


class GlobalFileState(RecordModel):
    """Session-wide library snapshots and last-seen digests of tracked files."""

    libraries: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    files: Dict[str, str] = Field(default_factory=dict)


__all__ = [
    "ChangeState",
    "FileRecord",
    "GlobalFileState",
    "RecordModel",
    "TestFileCache",
    "TestUnitCacheEntry",
    "TestUnitKey",
]
