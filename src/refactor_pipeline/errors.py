"""Error taxonomy for the refactoring pipeline.

Every error carries the identifiers of the artifact or change it concerns in
``details`` and maps to a distinct process exit code, so operators can tell
failure categories apart without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_BUILD_FAILURE = 3
EXIT_TEST_FAILURE = 4
EXIT_GATE_FAILURE = 5
EXIT_ILLEGAL_TRANSITION = 6
EXIT_BLOCKING_DEPENDENCY = 7
EXIT_EDIT_CONFLICT = 8
EXIT_SESSION_LOCKED = 9
EXIT_INVALID_INPUT = 10


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    exit_code = EXIT_UNEXPECTED

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Structured form for failure reports."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class IllegalTransition(PipelineError):
    """A phase operation was attempted from a phase that does not allow it."""

    exit_code = EXIT_ILLEGAL_TRANSITION


class ApprovalDenied(IllegalTransition):
    """The approval collaborator refused (or timed out on) the current plan."""


class BlockingDependency(PipelineError):
    """A change was started before all of its prerequisites completed."""

    exit_code = EXIT_BLOCKING_DEPENDENCY


class BuildFailure(PipelineError):
    """The build or static check failed for a change."""

    exit_code = EXIT_BUILD_FAILURE


class TestFailure(PipelineError):
    """Tests covering a change failed."""

    __test__ = False
    exit_code = EXIT_TEST_FAILURE


class EditConflict(PipelineError):
    """A change's edit anchor was missing or ambiguous in the current file."""

    exit_code = EXIT_EDIT_CONFLICT


class GateFailure(PipelineError):
    """Validation gate verdict was ``failed``."""

    exit_code = EXIT_GATE_FAILURE


class InvalidChangeSet(PipelineError):
    """The proposed change set cannot be sequenced."""

    exit_code = EXIT_INVALID_INPUT


class UnauthorizedArtifactWrite(PipelineError):
    """A phase tried to produce an artifact kind it does not own."""

    exit_code = EXIT_INVALID_INPUT


class InvalidArtifactReference(PipelineError):
    """An artifact referenced or read an artifact it may not see."""

    exit_code = EXIT_INVALID_INPUT


class SessionLocked(PipelineError):
    """Another live session already owns the project."""

    exit_code = EXIT_SESSION_LOCKED


@dataclass(frozen=True)
class CycleCollapsed:
    """Notice emitted when the sequencer merges a dependency cycle.

    Not an error: the merged change is applied atomically so every
    intermediate state stays buildable.
    """

    group_id: str
    members: tuple[str, ...]
    message: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            "notice": "CycleCollapsed",
            "group_id": self.group_id,
            "members": list(self.members),
            "message": self.message,
        }


def exit_code_for(error: Optional[BaseException]) -> int:
    """Map an exception to the CLI exit code of its category."""
    if error is None:
        return EXIT_OK
    if isinstance(error, PipelineError):
        return error.exit_code
    return EXIT_UNEXPECTED
