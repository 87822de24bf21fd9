"""CLI commands for inspecting and maintaining a shiori cache directory."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

import typer

from .config import DEFAULT_CONFIG_NAME, ShioriConfig, load_config
from .decision import evaluate
from .errors import ConfigError
from .memory.fingerprints import DependencyCache
from .memory.schema import TestFileCache, TestUnitCacheEntry, TestUnitKey
from .memory.store import FingerprintStore
from .tools.environment import environment_marker, installed_library_versions

LOGGER = logging.getLogger(__name__)

APP_HELP = "Inspect the fingerprint cache used to skip unchanged tests."

app = typer.Typer(help=APP_HELP)


def _load_settings(config: str) -> ShioriConfig:
    config_path = Path(config)
    try:
        return load_config(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _resolve_cache_dir(cache_dir: Optional[Path], config: str) -> Path:
    """Resolve the cache directory from the option or the configuration file."""
    if cache_dir is not None:
        return cache_dir.resolve()
    settings = _load_settings(config)
    root = Path(config).resolve().parent
    return settings.resolve_cache_dir(root)


CACHE_DIR_OPTION = typer.Option(
    None,
    "--cache-dir",
    "-d",
    help="Cache directory to inspect (defaults to the configured one).",
)
CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the shiori configuration file.",
)


def _open_store(cache_dir: Path) -> FingerprintStore:
    if not cache_dir.is_dir():
        typer.echo(f"No cache found at {cache_dir}")
        raise typer.Exit(code=1)
    return FingerprintStore(cache_dir)


def _keyed_units(cache: TestFileCache) -> List[Tuple[TestUnitKey, TestUnitCacheEntry]]:
    keyed = []
    for unit_id, entry in cache.units.items():
        try:
            keyed.append((TestUnitKey.parse(cache.path, unit_id), entry))
        except ValueError:
            LOGGER.warning("Ignoring malformed unit id %r in %s", unit_id, cache.path)
    return keyed


def _variant_label(key: TestUnitKey) -> str:
    return f" [{key.variant}]" if key.variant is not None else ""


@app.command()
def status(
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Summarise the contents of the cache directory."""
    directory = _resolve_cache_dir(cache_dir, config)
    store = _open_store(directory)
    state = store.load_global_state()
    test_files = store.iter_test_files()
    units = [entry for cache in test_files for entry in cache.units.values()]
    passing = sum(1 for entry in units if entry.result)

    typer.echo(f"Cache directory: {store.cache_dir}")
    typer.echo(f"Tracked files: {len(state.files)}")
    typer.echo(f"Test files: {len(test_files)}")
    typer.echo(f"Test units: {len(units)} | passing {passing} | failing {len(units) - passing}")
    typer.echo(f"Library snapshots: {len(state.libraries)}")


@app.command()
def show(
    test_file: Path = typer.Argument(..., help="Test file whose cached units should be listed."),
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """List every cached unit recorded for a test file."""
    directory = _resolve_cache_dir(cache_dir, config)
    store = _open_store(directory)
    cache = store.load_test_file(os.path.abspath(test_file))
    if not cache.units:
        typer.echo(f"No cached units for {test_file}")
        raise typer.Exit(code=1)

    typer.echo(f"{cache.path}:")
    for key, entry in sorted(_keyed_units(cache), key=lambda pair: (pair[0].line_number, pair[0].variant or "")):
        outcome = "passed" if entry.result else "failed"
        typer.echo(
            f"- line {key.line_number}{_variant_label(key)} [{outcome}] "
            f"{entry.environment} ({len(entry.files)} file(s))"
        )
        for path in entry.files:
            typer.echo(f"    {path}")


@app.command()
def explain(
    test_file: Path = typer.Argument(..., help="Test file containing the unit."),
    line: int = typer.Argument(..., help="Declaration line of the test unit."),
    variant: Optional[str] = typer.Option(None, "--variant", help="Parameter id of a parametrised test."),
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    config: str = CONFIG_OPTION,
) -> None:
    """Report whether a unit would be skipped on the next run, and why."""
    directory = _resolve_cache_dir(cache_dir, config)
    store = _open_store(directory)
    cache = DependencyCache.load(store)
    key = TestUnitKey(file_path=os.path.abspath(test_file), line_number=line, variant=variant)
    decision = evaluate(
        key,
        cache.test_file(key.file_path),
        file_records=cache.file_records,
        library_snapshots=cache.library_snapshots,
        current_versions=installed_library_versions(),
        environment=environment_marker(),
    )
    typer.echo(f"{key.file_path}:{key.unit_id} -> {decision.describe()}")


@app.command()
def clear(
    cache_dir: Optional[Path] = CACHE_DIR_OPTION,
    config: str = CONFIG_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete the cache directory so every test runs next time."""
    directory = _resolve_cache_dir(cache_dir, config)
    if not directory.exists():
        typer.echo(f"No cache found at {directory}")
        return
    if not yes:
        typer.confirm(f"Delete {directory}?", abort=True)
    shutil.rmtree(directory)
    typer.echo(f"Removed {directory}")


if __name__ == "__main__":
    app()
