"""Analysis stage (understanding): capture the pre-change baseline."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..collaborators.base import (
    BuildResult,
    Collaborators,
    Finding,
    TestResult,
    TestScope,
    WorkspaceSnapshot,
)
from ..config import PipelineConfig
from ..errors import BuildFailure, TestFailure
from ..gates.metrics import Baseline
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class AnalysisResult:
    build: BuildResult
    tests: Optional[TestResult]
    findings: list[Finding] = field(default_factory=list)

    @property
    def baseline(self) -> Baseline:
        return Baseline.capture(self.build, self.tests, self.findings)

    def to_dict(self) -> dict:
        return {
            "build": self.build.to_dict(),
            "tests": self.tests.to_dict() if self.tests else None,
            "findings": [f.to_dict() for f in self.findings],
            "baseline": self.baseline.to_dict(),
        }


class CodeAnalyzer:
    """Runs build, tests and static analysis once, before any change."""

    def __init__(self, project_path: Path, collaborators: Collaborators, config: PipelineConfig) -> None:
        self.project_path = Path(project_path).resolve()
        self.collaborators = collaborators
        self.config = config

    async def analyze(self, files: list[str]) -> AnalysisResult:
        """Measure the untouched project.

        The three collaborator calls are independent and read-only, so they
        run concurrently.
        """
        logger.info(f"Analyzing {len(files)} file(s)")
        snapshot = WorkspaceSnapshot(root=self.project_path, files=tuple(files))

        async def build() -> BuildResult:
            try:
                return await asyncio.wait_for(
                    self.collaborators.build.build(snapshot), self.config.build.timeout
                )
            except asyncio.TimeoutError as e:
                raise BuildFailure("Baseline build timed out", step="analysis") from e

        async def tests() -> Optional[TestResult]:
            if self.collaborators.tests is None:
                return None
            try:
                return await asyncio.wait_for(
                    self.collaborators.tests.run_tests(TestScope(full=True)),
                    self.config.tests.timeout,
                )
            except asyncio.TimeoutError as e:
                raise TestFailure("Baseline test run timed out", step="analysis") from e

        async def lint() -> list[Finding]:
            if self.collaborators.lint is None:
                return []
            try:
                return await asyncio.wait_for(
                    self.collaborators.lint.lint(files), self.config.lint.timeout
                )
            except asyncio.TimeoutError as e:
                raise BuildFailure("Baseline static analysis timed out", step="analysis") from e

        build_result, test_result, findings = await asyncio.gather(build(), tests(), lint())
        result = AnalysisResult(build=build_result, tests=test_result, findings=findings)
        logger.info(
            f"Baseline: {build_result.error_count} error(s), {build_result.warning_count} warning(s), "
            f"{len(findings)} finding(s)"
        )
        return result
