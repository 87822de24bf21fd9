"""Skip tests whose traced dependencies are unchanged since their last pass."""

from .config import ShioriConfig, load_config
from .decision import SkipCheck, SkipDecision, evaluate, should_skip
from .errors import ConfigError, ShioriError
from .memory.fingerprints import DependencyCache
from .memory.schema import (
    ChangeState,
    FileRecord,
    GlobalFileState,
    TestFileCache,
    TestUnitCacheEntry,
    TestUnitKey,
)
from .memory.store import FingerprintStore
from .orchestrator import Orchestrator, TestUnit, UnitOutcome
from .tools.digest import ContentDigester
from .tools.tracer import ExecutionTracer, SourceFilter

__version__ = "0.1.0"

__all__ = [
    "ChangeState",
    "ConfigError",
    "ContentDigester",
    "DependencyCache",
    "ExecutionTracer",
    "FileRecord",
    "FingerprintStore",
    "GlobalFileState",
    "Orchestrator",
    "ShioriConfig",
    "ShioriError",
    "SkipCheck",
    "SkipDecision",
    "TestFileCache",
    "TestUnit",
    "TestUnitCacheEntry",
    "TestUnitKey",
    "UnitOutcome",
    "evaluate",
    "load_config",
    "should_skip",
]
