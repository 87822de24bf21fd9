"""pytest integration: reuse cached passes for tests whose dependencies are unchanged."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from .config import DEFAULT_CONFIG_NAME, ShioriConfig, load_config
from .errors import ConfigError
from .memory.schema import TestUnitKey
from .orchestrator import Orchestrator, TestUnit

LOGGER = logging.getLogger(__name__)

CACHED_PROPERTY = ("shiori", "cached")
PLUGIN_NAME = "shiori-session"


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini(
        "shiori_config",
        help=f"Path to the shiori YAML configuration (default: {DEFAULT_CONFIG_NAME} in rootdir).",
        default="",
    )
    parser.addini(
        "shiori_cache_dir",
        help="Directory holding shiori fingerprint caches.",
        default="",
    )


def _settings_for(config: pytest.Config) -> ShioriConfig:
    ini_path = str(config.getini("shiori_config") or "").strip()
    config_path = Path(ini_path) if ini_path else Path(DEFAULT_CONFIG_NAME)
    if not config_path.is_absolute():
        config_path = config.rootpath / config_path
    overrides = {"cache_dir": str(config.getini("shiori_cache_dir") or "").strip()}
    try:
        return load_config(config_path, overrides=overrides)
    except ConfigError as error:
        raise pytest.UsageError(str(error)) from error


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "shiori(enabled=True): pass False to always run the test instead of reusing a cached pass.",
    )
    settings = _settings_for(config)
    if settings.enabled and not config.pluginmanager.has_plugin(PLUGIN_NAME):
        config.pluginmanager.register(ShioriPlugin(config, settings), PLUGIN_NAME)


def _caching_allowed(item: pytest.Item) -> bool:
    marker = item.get_closest_marker("shiori")
    if marker is None:
        return True
    if marker.args and marker.args[0] is False:
        return False
    return marker.kwargs.get("enabled", True) is not False


def _declaration_line(item: pytest.Function) -> Optional[int]:
    """Return the 1-based line of ``item``'s definition when it lives in ``item.path``."""
    fspath, line, _ = item.reportinfo()
    if line is None or os.path.abspath(os.fspath(fspath)) != os.path.abspath(item.path):
        return None
    return line + 1


def unit_for_item(item: pytest.Item) -> Optional[TestUnit]:
    """Map a collected item onto a cacheable test unit; ``None`` if it cannot be cached.

    Only items that run through ``pytest_pyfunc_call`` qualify, since that is
    where a cached pass replaces the call. ``unittest.TestCase`` methods
    override ``runtest`` and always run.
    """
    if not isinstance(item, pytest.Function) or type(item).runtest is not pytest.Function.runtest:
        return None
    file_path = str(item.path)
    line = _declaration_line(item)
    if line is None:
        # Defined in another module, e.g. inherited from a shared base class.
        key = TestUnitKey(file_path=file_path, line_number=0, variant=item.nodeid)
    else:
        callspec = getattr(item, "callspec", None)
        key = TestUnitKey(
            file_path=file_path,
            line_number=line,
            variant=callspec.id if callspec is not None else None,
        )
    return TestUnit(key=key, cacheable=_caching_allowed(item))


class ShioriPlugin:
    """Session-scoped plugin object registered only when caching is enabled."""

    def __init__(self, config: pytest.Config, settings: ShioriConfig) -> None:
        self.config = config
        self.settings = settings
        self.orchestrator: Optional[Orchestrator] = None
        self._cached: Set[str] = set()
        self._phases: Dict[str, List[Tuple[str, str, bool]]] = {}

    @pytest.hookimpl(tryfirst=True)
    def pytest_sessionstart(self, session: pytest.Session) -> None:
        try:
            self.orchestrator = Orchestrator.start(self.settings, self.config.rootpath)
        except OSError as error:
            LOGGER.warning("shiori cache unavailable, running every test: %s", error)
            self.orchestrator = None
            return
        LOGGER.debug("shiori enabled; cache at %s", self.orchestrator.cache.store.cache_dir)

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_protocol(self, item: pytest.Item, nextitem: Optional[pytest.Item]):
        unit = unit_for_item(item) if self.orchestrator is not None else None
        if unit is None:
            yield
            return

        if self.orchestrator.should_skip(unit):
            self._cached.add(item.nodeid)
            item.user_properties.append(CACHED_PROPERTY)
            yield
            return

        self._phases[item.nodeid] = []
        tracer = self.orchestrator.tracer()
        with tracer.tracing():
            yield
        phases = self._phases.pop(item.nodeid, [])
        self.orchestrator.complete(unit, tracer, passed=_passed(phases))

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        phases = self._phases.get(report.nodeid)
        if phases is not None:
            phases.append((report.when, report.outcome, hasattr(report, "wasxfail")))

    @pytest.hookimpl(tryfirst=True)
    def pytest_pyfunc_call(self, pyfuncitem: pytest.Function) -> Optional[bool]:
        if pyfuncitem.nodeid in self._cached:
            return True
        return None

    def pytest_report_teststatus(self, report: pytest.TestReport, config: pytest.Config):
        if report.when == "call" and report.passed and CACHED_PROPERTY in report.user_properties:
            return "cached", "c", ("CACHED", {"green": True})
        return None

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int) -> None:
        if self.orchestrator is not None:
            self.orchestrator.finish()

    def pytest_terminal_summary(self, terminalreporter, exitstatus: int, config: pytest.Config) -> None:
        if self.orchestrator is None:
            return
        stats = self.orchestrator.stats
        terminalreporter.write_sep("-", "shiori")
        terminalreporter.write_line(
            f"{stats.cached} cached, {stats.executed} traced; cache at {self.orchestrator.cache.store.cache_dir}"
        )
        if stats.decisions:
            breakdown = ", ".join(f"{label} {count}" for label, count in sorted(stats.decisions.items()))
            terminalreporter.write_line(f"decisions: {breakdown}")


def _passed(phases: List[Tuple[str, str, bool]]) -> bool:
    """A unit passed when no phase failed and its call phase passed outright."""
    if not phases:
        return False
    if any(outcome == "failed" for _, outcome, _ in phases):
        return False
    return any(when == "call" and outcome == "passed" and not xfail for when, outcome, xfail in phases)


__all__ = ["ShioriPlugin", "unit_for_item"]
