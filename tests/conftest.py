from __future__ import annotations

import importlib.util
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_shiori_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's SHIORI settings out of the tests."""
    monkeypatch.delenv("SHIORI", raising=False)
    monkeypatch.delenv("SHIORI_CACHE_DIR", raising=False)


def _write_module(path: Path, source: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source).lstrip(), encoding="utf-8")
    return path


def _load_module(path: Path, name: str) -> ModuleType:
    """Import ``path`` under ``name`` without touching ``sys.path``."""
    spec = importlib.util.spec_from_file_location(name, path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@dataclass(slots=True)
class TinyProject:
    """Synthetic project with one test file and one helper module."""

    root: Path
    test_file: Path
    helper: Path
    other: Path

    def load_helper(self) -> ModuleType:
        return _load_module(self.helper, f"tiny_helper_{id(self)}")

    def load_other(self) -> ModuleType:
        return _load_module(self.other, f"tiny_other_{id(self)}")


@pytest.fixture()
def tiny_project(tmp_path: Path) -> TinyProject:
    root = tmp_path / "project"
    helper = _write_module(
        root / "helper.py",
        """
        def value() -> int:
            return 1
        """,
    )
    other = _write_module(
        root / "other.py",
        """
        def value() -> int:
            return 2
        """,
    )
    test_file = _write_module(
        root / "test_alpha.py",
        """
        def test_alpha() -> None:
            pass
        """,
    )
    return TinyProject(root=root, test_file=test_file, helper=helper, other=other)


@pytest.fixture()
def run_shiori(pytester: pytest.Pytester, monkeypatch: pytest.MonkeyPatch) -> Callable[..., pytest.RunResult]:
    """Run an inner pytest session with the shiori plugin enabled."""
    monkeypatch.setenv("SHIORI", "1")
    monkeypatch.setenv("SHIORI_CACHE_DIR", str(pytester.path / ".shiori_cache"))
    monkeypatch.setenv("PYTEST_DISABLE_PLUGIN_AUTOLOAD", "1")

    def _run(*args: str) -> pytest.RunResult:
        return pytester.runpytest("-p", "shiori.plugin", "-p", "no:cacheprovider", *args)

    return _run


@pytest.fixture()
def write_module() -> Callable[[Path, str], Path]:
    return _write_module


@pytest.fixture()
def load_module() -> Callable[[Path, str], ModuleType]:
    return _load_module
