"""Interfaces of the external tools the pipeline drives.

The orchestrator never compiles, lints or tests code itself. It hands a
workspace snapshot to these collaborators and acts on what they report.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class WorkspaceSnapshot:
    """The state a build or lint runs against: a root and the changed files."""

    root: Path
    files: tuple[str, ...] = ()


@dataclass
class Diagnostic:
    """One compiler or checker message."""

    path: str
    line: int = 0
    message: str = ""
    severity: str = "error"

    def to_dict(self) -> dict:
        return {"path": self.path, "line": self.line, "message": self.message, "severity": self.severity}


@dataclass
class BuildResult:
    error_count: int = 0
    warning_count: int = 0
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> dict:
        return {
            "error_count": self.error_count,
            "warning_count": self.warning_count,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


@dataclass
class TestFailureDetail:
    __test__ = False

    test_id: str
    message: str = ""
    path: str = ""

    def to_dict(self) -> dict:
        return {"test_id": self.test_id, "message": self.message, "path": self.path}


@dataclass
class TestScope:
    """Tests to run; an empty ``tests`` tuple with ``full=True`` means all."""

    __test__ = False

    tests: tuple[str, ...] = ()
    files: tuple[str, ...] = ()
    full: bool = False


@dataclass
class TestResult:
    __test__ = False

    passed: int = 0
    failed: int = 0
    total: int = 0
    failure_details: list[TestFailureDetail] = field(default_factory=list)
    coverage: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "total": self.total,
            "failure_details": [f.to_dict() for f in self.failure_details],
            "coverage": self.coverage,
        }


@dataclass
class Finding:
    """One static analysis result.

    ``value`` carries a measurement where the rule produces one, e.g. the
    cyclomatic complexity of a function. Findings in the ``metric`` category
    report a gate metric directly, with ``rule`` naming the metric.
    """

    rule: str
    path: str
    message: str = ""
    line: int = 0
    category: str = "other"
    severity: str = "warning"
    value: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "path": self.path,
            "message": self.message,
            "line": self.line,
            "category": self.category,
            "severity": self.severity,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Finding:
        return cls(
            rule=str(data.get("rule", "")),
            path=str(data.get("path", "")),
            message=str(data.get("message", "")),
            line=int(data.get("line", 0)),
            category=str(data.get("category", "other")),
            severity=str(data.get("severity", "warning")),
            value=data.get("value"),
        )


@runtime_checkable
class BuildCollaborator(Protocol):
    async def build(self, snapshot: WorkspaceSnapshot) -> BuildResult: ...


@runtime_checkable
class TestCollaborator(Protocol):
    async def run_tests(self, scope: TestScope) -> TestResult: ...


@runtime_checkable
class StaticAnalysisCollaborator(Protocol):
    async def lint(self, files: list[str]) -> list[Finding]: ...


@runtime_checkable
class ApprovalCollaborator(Protocol):
    async def request_approval(self, plan_artifact_id: str) -> bool: ...


@dataclass
class Collaborators:
    """The set of external tools a session runs with."""

    build: BuildCollaborator
    tests: Optional[TestCollaborator] = None
    lint: Optional[StaticAnalysisCollaborator] = None
    approval: Optional[ApprovalCollaborator] = None
