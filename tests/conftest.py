"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from refactor_pipeline.collaborators import (
    BuildResult,
    Collaborators,
    Diagnostic,
    Finding,
    TestResult,
    TestScope,
    WorkspaceSnapshot,
)
from refactor_pipeline.config import PipelineConfig
from refactor_pipeline.models import Change, Edit
from refactor_pipeline.utils.logger import reset_logging

BROKEN = "BROKEN"


class FakeBuild:
    """Reports one error per snapshot file containing ``BROKEN``."""

    def __init__(self, delay: float = 0.0, warnings: int = 0) -> None:
        self.delay = delay
        self.warnings = warnings
        self.calls: list[WorkspaceSnapshot] = []
        self.cancelled = False

    async def build(self, snapshot: WorkspaceSnapshot) -> BuildResult:
        self.calls.append(snapshot)
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise

        diagnostics = []
        for relative in snapshot.files:
            path = snapshot.root / relative
            if path.is_file() and BROKEN in path.read_text(encoding="utf-8"):
                diagnostics.append(Diagnostic(path=relative, line=1, message="syntax error"))
        return BuildResult(
            error_count=len(diagnostics),
            warning_count=self.warnings,
            diagnostics=diagnostics,
        )


class FakeTests:
    def __init__(self, result: Optional[TestResult] = None, delay: float = 0.0) -> None:
        self.result = result or TestResult(passed=3, total=3, coverage=80.0)
        self.delay = delay
        self.scopes: list[TestScope] = []

    async def run_tests(self, scope: TestScope) -> TestResult:
        self.scopes.append(scope)
        await asyncio.sleep(self.delay)
        return self.result


class FakeLint:
    def __init__(self, findings: Optional[list[Finding]] = None, delay: float = 0.0) -> None:
        self.findings = list(findings or [])
        self.delay = delay
        self.calls: list[list[str]] = []

    async def lint(self, files: list[str]) -> list[Finding]:
        self.calls.append(list(files))
        await asyncio.sleep(self.delay)
        return list(self.findings)


class FixedApproval:
    """Answers every approval request with a preset decision."""

    def __init__(self, decision: bool) -> None:
        self.decision = decision

    async def request_approval(self, plan_artifact_id: str) -> bool:
        return self.decision


class SlowApproval:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def request_approval(self, plan_artifact_id: str) -> bool:
        await asyncio.sleep(self.delay)
        return True


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    reset_logging()


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A tiny project with two modules and one test file."""
    root = tmp_path / "project"
    (root / "src").mkdir(parents=True)
    (root / "tests").mkdir()
    (root / "src" / "app.py").write_bytes(b"def main():\r\n    return helper()\r\n")
    (root / "src" / "util.py").write_text("def helper():\n    return 1\n", encoding="utf-8")
    (root / "tests" / "test_app.py").write_text("def test_main():\n    assert True\n", encoding="utf-8")
    return root


@pytest.fixture
def config() -> PipelineConfig:
    config = PipelineConfig()
    config.tests.coverage = {"tests/test_app.py": ["src/*.py"]}
    return config


@pytest.fixture
def fakes() -> Collaborators:
    return Collaborators(
        build=FakeBuild(),
        tests=FakeTests(),
        lint=FakeLint(),
        approval=FixedApproval(True),
    )


def make_change(
    change_id: str,
    *,
    depends_on: tuple[str, ...] = (),
    risk: str = "low",
    complexity: int = 1,
    edits: tuple[Edit, ...] = (),
    files: tuple[str, ...] = (),
) -> Change:
    return Change.from_dict({
        "id": change_id,
        "title": f"change {change_id}",
        "depends_on": list(depends_on),
        "risk_level": risk,
        "complexity": complexity,
        "files_affected": list(files) or [e.path for e in edits],
        "edits": [e.to_dict() for e in edits],
    })


def run(coro):
    return asyncio.run(coro)
