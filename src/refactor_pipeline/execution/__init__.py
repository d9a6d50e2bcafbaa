"""Change execution and rollback."""

from .controller import (
    ExecutionController,
    ExecutionLogEntry,
    ExecutionReport,
    select_tests,
)
from .edits import LineDelta, apply_change, apply_edit, count_lines
from .snapshot import FileSnapshot, SnapshotStore

__all__ = [
    "ExecutionController",
    "ExecutionLogEntry",
    "ExecutionReport",
    "FileSnapshot",
    "LineDelta",
    "SnapshotStore",
    "apply_change",
    "apply_edit",
    "count_lines",
    "select_tests",
]
