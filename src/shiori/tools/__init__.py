"""Collaborators that observe files, code execution and the runtime environment."""

from .digest import ContentDigester, file_digest
from .environment import environment_marker, installed_library_versions, snapshot_id
from .tracer import ExecutionTracer, SourceFilter

__all__ = [
    "ContentDigester",
    "ExecutionTracer",
    "SourceFilter",
    "environment_marker",
    "file_digest",
    "installed_library_versions",
    "snapshot_id",
]
