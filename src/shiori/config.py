"""Configuration loading for the shiori test cache."""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError
from .memory.fingerprints import DEFAULT_MAX_LIBRARY_SNAPSHOTS
from .memory.store import DEFAULT_CACHE_DIR

DEFAULT_CONFIG_NAME = "shiori.yaml"
ENABLE_ENV = "SHIORI"
CACHE_DIR_ENV = "SHIORI_CACHE_DIR"
_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "enabled": False,
    "cache_dir": DEFAULT_CACHE_DIR.as_posix(),
    "exclude": [],
    "max_library_snapshots": DEFAULT_MAX_LIBRARY_SNAPSHOTS,
}


class ShioriConfig(BaseModel):
    """Resolved settings for one suite run."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    cache_dir: Path = DEFAULT_CACHE_DIR
    exclude: List[str] = Field(default_factory=list)
    max_library_snapshots: int = Field(default=DEFAULT_MAX_LIBRARY_SNAPSHOTS, ge=1)

    def resolve_cache_dir(self, root: Path) -> Path:
        """Return ``cache_dir`` anchored at ``root`` when it is relative."""
        if self.cache_dir.is_absolute():
            return self.cache_dir
        return (root / self.cache_dir).resolve()


def is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _read_yaml(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse {config_path}: {error}") from error
    except OSError as error:
        raise ConfigError(f"Unable to read {config_path}: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level.")
    return data


def load_config(
    config_path: Optional[Path] = None,
    *,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ShioriConfig:
    """Merge defaults, the YAML file, explicit overrides and the environment.

    A missing ``config_path`` is not an error; the file is optional.
    """
    env = os.environ if environ is None else environ
    data = copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)

    if config_path is not None and config_path.is_file():
        data.update(_read_yaml(config_path))

    for key, value in (overrides or {}).items():
        if value is not None and value != "":
            data[key] = value

    if ENABLE_ENV in env:
        data["enabled"] = is_truthy(env.get(ENABLE_ENV))
    cache_dir = (env.get(CACHE_DIR_ENV) or "").strip()
    if cache_dir:
        data["cache_dir"] = cache_dir

    try:
        return ShioriConfig.model_validate(data)
    except ValidationError as error:
        source = config_path if config_path is not None else "configuration"
        raise ConfigError(f"Invalid shiori configuration in {source}: {error}") from error


__all__ = [
    "CACHE_DIR_ENV",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ENABLE_ENV",
    "ShioriConfig",
    "is_truthy",
    "load_config",
]
