"""Shell-command backed collaborators.

Each collaborator runs a configured command in the project directory and
parses its output: compiler-style ``path:line: message`` diagnostics for
builds, the pytest summary for tests, ruff's JSON output for lint.
"""

from __future__ import annotations

import asyncio
import json
import re
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..config import CommandConfig, LintCommandConfig, TestCommandConfig
from ..utils.logger import get_logger
from .base import (
    BuildResult,
    Diagnostic,
    Finding,
    TestFailureDetail,
    TestResult,
    TestScope,
    WorkspaceSnapshot,
)

logger = get_logger(__name__)

DIAGNOSTIC_RE = re.compile(
    r"^(?P<path>[^\s:][^:]*):(?P<line>\d+)(?::\d+)?:\s*(?P<message>.*)$"
)
ERROR_RE = re.compile(r"\berror\b", re.IGNORECASE)
WARNING_RE = re.compile(r"\bwarning\b", re.IGNORECASE)
SUMMARY_RE = re.compile(r"(\d+) (passed|failed|errors?)")
FAILED_RE = re.compile(r"^(?:FAILED|ERROR) (\S+)(?: - (.*))?$")
COVERAGE_RE = re.compile(r"^TOTAL\s.*?(\d+(?:\.\d+)?)%\s*$")
COMPLEXITY_RE = re.compile(r"\((\d+) > \d+\)")


@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str

    @property
    def lines(self) -> list[str]:
        return (self.stdout + "\n" + self.stderr).splitlines()


async def run_command(command: str, cwd: Path) -> CommandOutput:
    """Run a shell command and capture its output.

    The subprocess is killed if the awaiting task is cancelled, so a
    caller-side timeout never leaves a stray process behind.
    """
    logger.debug(f"Running: {command} (cwd={cwd})")
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    return CommandOutput(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


class ShellBuildCollaborator:
    """Runs the configured build command against the workspace."""

    def __init__(self, config: CommandConfig) -> None:
        self.config = config

    async def build(self, snapshot: WorkspaceSnapshot) -> BuildResult:
        if not self.config.enabled:
            return BuildResult()

        output = await run_command(self.config.command, snapshot.root)
        result = parse_build_output(output)
        logger.info(
            f"Build finished: exit={output.returncode} "
            f"errors={result.error_count} warnings={result.warning_count}"
        )
        return result


def parse_build_output(output: CommandOutput) -> BuildResult:
    """Count errors and warnings in compiler-style output."""
    diagnostics: list[Diagnostic] = []
    errors = warnings = 0
    for line in output.lines:
        is_error = bool(ERROR_RE.search(line))
        is_warning = not is_error and bool(WARNING_RE.search(line))
        if not (is_error or is_warning):
            continue
        errors += is_error
        warnings += is_warning
        match = DIAGNOSTIC_RE.match(line.strip())
        diagnostics.append(Diagnostic(
            path=match.group("path") if match else "",
            line=int(match.group("line")) if match else 0,
            message=(match.group("message") if match else line).strip(),
            severity="error" if is_error else "warning",
        ))

    # A failing exit code is an error even when nothing was printed.
    if output.returncode != 0 and errors == 0:
        errors = 1
        diagnostics.append(Diagnostic(path="", message=f"build exited with {output.returncode}"))

    return BuildResult(error_count=errors, warning_count=warnings, diagnostics=diagnostics)


class ShellTestCollaborator:
    """Runs the configured test command, scoped to selected test paths."""

    __test__ = False

    def __init__(self, config: TestCommandConfig, project_path: Path) -> None:
        self.config = config
        self.project_path = Path(project_path)

    async def run_tests(self, scope: TestScope) -> TestResult:
        if not self.config.enabled:
            return TestResult()

        targets = "" if scope.full else " ".join(shlex.quote(t) for t in scope.tests)
        command = self.config.command.replace("{tests}", targets).strip()
        output = await run_command(command, self.project_path)
        result = parse_test_output(output)
        logger.info(f"Tests finished: {result.passed}/{result.total} passed, {result.failed} failed")
        return result


def parse_test_output(output: CommandOutput) -> TestResult:
    """Read pytest's summary, failure lines and coverage total."""
    counts = {"passed": 0, "failed": 0, "error": 0}
    failures: list[TestFailureDetail] = []
    coverage: Optional[float] = None

    for line in output.lines:
        stripped = line.strip()
        failed = FAILED_RE.match(stripped)
        if failed:
            test_id = failed.group(1)
            failures.append(TestFailureDetail(
                test_id=test_id,
                message=failed.group(2) or "",
                path=test_id.split("::")[0],
            ))
            continue
        cov = COVERAGE_RE.match(stripped)
        if cov:
            coverage = float(cov.group(1))
            continue
        if stripped.startswith("=") or " in " in stripped:
            for number, label in SUMMARY_RE.findall(stripped):
                key = "error" if label.startswith("error") else label
                counts[key] = int(number)

    failed_count = counts["failed"] + counts["error"]
    if output.returncode not in (0, 5) and failed_count == 0:
        failed_count = 1
        failures.append(TestFailureDetail(
            test_id="<test command>",
            message=f"test command exited with {output.returncode}",
        ))

    return TestResult(
        passed=counts["passed"],
        failed=failed_count,
        total=counts["passed"] + failed_count,
        failure_details=failures,
        coverage=coverage,
    )


class ShellLintCollaborator:
    """Runs a ruff-compatible linter and categorises its JSON findings."""

    def __init__(self, config: LintCommandConfig, project_path: Path) -> None:
        self.config = config
        self.project_path = Path(project_path).resolve()

    async def lint(self, files: list[str]) -> list[Finding]:
        if not self.config.enabled:
            return []

        targets = " ".join(shlex.quote(f) for f in files) or "."
        command = self.config.command.replace("{files}", targets)
        output = await run_command(command, self.project_path)
        findings = self.parse(output.stdout)
        logger.info(f"Lint finished: {len(findings)} finding(s)")
        return findings

    def parse(self, stdout: str) -> list[Finding]:
        """Convert ruff ``--output-format json`` records to findings."""
        if not stdout.strip():
            return []
        try:
            records = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ValueError(f"Linter did not produce JSON output: {e}") from e

        findings = []
        for record in records:
            code = str(record.get("code") or "")
            message = str(record.get("message", ""))
            value = None
            category = self.categorize(code)
            if category == "complexity":
                match = COMPLEXITY_RE.search(message)
                value = float(match.group(1)) if match else None
            findings.append(Finding(
                rule=code,
                path=self._relative(str(record.get("filename", ""))),
                message=message,
                line=int((record.get("location") or {}).get("row", 0)),
                category=category,
                severity="error" if self._is_error(code) else "warning",
                value=value,
            ))
        return findings

    def categorize(self, code: str) -> str:
        """Longest configured rule prefix wins."""
        best = ""
        for prefix in self.config.categories:
            if code.startswith(prefix) and len(prefix) > len(best):
                best = prefix
        return self.config.categories.get(best, "other") if best else "other"

    def _is_error(self, code: str) -> bool:
        return any(code.startswith(prefix) for prefix in self.config.error_rules)

    def _relative(self, filename: str) -> str:
        if not filename:
            return ""
        path = Path(filename)
        try:
            return path.resolve().relative_to(self.project_path).as_posix()
        except ValueError:
            return path.as_posix()
