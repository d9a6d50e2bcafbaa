"""External collaborators: build, tests, static analysis and approval."""

from .approval import ConsoleApproval
from .base import (
    ApprovalCollaborator,
    BuildCollaborator,
    BuildResult,
    Collaborators,
    Diagnostic,
    Finding,
    StaticAnalysisCollaborator,
    TestCollaborator,
    TestFailureDetail,
    TestResult,
    TestScope,
    WorkspaceSnapshot,
)
from .commands import (
    ShellBuildCollaborator,
    ShellLintCollaborator,
    ShellTestCollaborator,
    run_command,
)

__all__ = [
    "ApprovalCollaborator",
    "BuildCollaborator",
    "BuildResult",
    "Collaborators",
    "ConsoleApproval",
    "Diagnostic",
    "Finding",
    "ShellBuildCollaborator",
    "ShellLintCollaborator",
    "ShellTestCollaborator",
    "StaticAnalysisCollaborator",
    "TestCollaborator",
    "TestFailureDetail",
    "TestResult",
    "TestScope",
    "WorkspaceSnapshot",
    "run_command",
]
