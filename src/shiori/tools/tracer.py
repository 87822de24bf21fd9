"""Record which project source files execute while a unit of work runs.

The tracer installs a profile hook for the duration of a unit of work and
collects the ``co_filename`` of every Python call it observes. Recorded paths
are then filtered down to project-owned files: synthetic sources, the
interpreter's standard library and installed third-party distributions are
dropped, because library versions rather than file contents stand in for
changes there.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import site
import sys
import sysconfig
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

LOGGER = logging.getLogger(__name__)

_LIBRARY_SEGMENTS = ("site-packages", "dist-packages")
_PACKAGE_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _runtime_prefixes() -> List[str]:
    """Return installation directories of the interpreter and installed libraries."""
    candidates: List[str] = []
    paths = sysconfig.get_paths()
    for name in ("stdlib", "platstdlib", "purelib", "platlib"):
        value = paths.get(name)
        if value:
            candidates.append(value)
    try:
        candidates.extend(site.getsitepackages())
    except AttributeError:
        pass
    user_site = getattr(site, "getusersitepackages", lambda: None)()
    if isinstance(user_site, str):
        candidates.append(user_site)
    normalised = {os.path.abspath(entry) for entry in candidates if entry}
    return sorted(normalised)


@dataclass(slots=True)
class SourceFilter:
    """Decide whether a traced path is a project-owned source file."""

    excluded_prefixes: Tuple[str, ...] = field(default_factory=lambda: tuple(_runtime_prefixes()))
    patterns: Tuple[str, ...] = ()
    _verdicts: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def default(cls, exclude: Iterable[str] = ()) -> "SourceFilter":
        prefixes = [*_runtime_prefixes(), _PACKAGE_ROOT]
        patterns: List[str] = []
        for entry in exclude:
            if any(char in entry for char in "*?["):
                patterns.append(entry)
            else:
                prefixes.append(os.path.abspath(entry))
        return cls(excluded_prefixes=tuple(sorted(set(prefixes))), patterns=tuple(patterns))

    def accepts(self, path: str) -> bool:
        verdict = self._verdicts.get(path)
        if verdict is None:
            verdict = self._evaluate(path)
            self._verdicts[path] = verdict
        return verdict

    def _evaluate(self, path: str) -> bool:
        if not path or _is_synthetic(path):
            return False
        absolute = os.path.abspath(path)
        if any(segment in _LIBRARY_SEGMENTS for segment in Path(absolute).parts):
            return False
        for prefix in self.excluded_prefixes:
            if absolute == prefix or absolute.startswith(prefix.rstrip(os.sep) + os.sep):
                return False
        if any(fnmatch.fnmatch(absolute, pattern) for pattern in self.patterns):
            return False
        return os.path.isfile(absolute)


def _is_synthetic(path: str) -> bool:
    """Return ``True`` for sources produced by ``exec``/``eval`` or frozen modules."""
    stripped = path.strip()
    if stripped.startswith("<") and stripped.endswith(">"):
        return True
    return stripped.startswith("(") and stripped.endswith(")")


class ExecutionTracer:
    """Collect the source files whose code runs while tracing is active."""

    def __init__(self, source_filter: Optional[SourceFilter] = None) -> None:
        self.source_filter = source_filter or SourceFilter.default()
        self._sources: Set[str] = set()
        self._previous: Optional[Callable] = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _profile(self, frame, event, arg):  # noqa: ANN001 - signature fixed by sys.setprofile
        if event == "call":
            self._sources.add(frame.f_code.co_filename)

    def start(self) -> None:
        if self._active:
            raise RuntimeError("Execution tracer is already active")
        self._sources = set()
        self._previous = sys.getprofile()
        self._active = True
        sys.setprofile(self._profile)

    def stop(self) -> None:
        if not self._active:
            return
        sys.setprofile(self._previous)
        self._previous = None
        self._active = False

    @contextmanager
    def tracing(self) -> Iterator["ExecutionTracer"]:
        """Trace the enclosed block; tracing is disabled on every exit path."""
        self.start()
        try:
            yield self
        finally:
            self.stop()

    def dependent_files(self, own_file: str | Path | None = None) -> List[str]:
        """Return sorted, distinct project files observed, plus ``own_file``."""
        paths = {os.path.abspath(source) for source in self._sources if self.source_filter.accepts(source)}
        if own_file is not None:
            paths.add(os.path.abspath(os.fspath(own_file)))
        LOGGER.debug("Traced %d source(s), %d of them project file(s)", len(self._sources), len(paths))
        return sorted(paths)


__all__ = [
    "ExecutionTracer",
    "SourceFilter",
]
