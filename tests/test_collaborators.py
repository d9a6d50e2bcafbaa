"""Tests for shell collaborator output parsing."""

from __future__ import annotations

import json
import sys
from pathlib import Path

from conftest import run
from refactor_pipeline.collaborators import ShellBuildCollaborator, ShellLintCollaborator, WorkspaceSnapshot
from refactor_pipeline.collaborators.commands import CommandOutput, parse_build_output, parse_test_output
from refactor_pipeline.config import CommandConfig, LintCommandConfig


def test_build_output_counts_errors_and_warnings():
    output = CommandOutput(
        returncode=1,
        stdout="src/app.py:3:1: error: undefined name 'x'\nsrc/util.py:8: warning: unused import\n",
        stderr="",
    )

    result = parse_build_output(output)

    assert (result.error_count, result.warning_count) == (1, 1)
    assert result.diagnostics[0].path == "src/app.py"
    assert result.diagnostics[0].line == 3


def test_silent_nonzero_exit_is_an_error():
    result = parse_build_output(CommandOutput(returncode=2, stdout="", stderr=""))

    assert result.error_count == 1
    assert not result.ok


def test_pytest_summary_and_coverage():
    stdout = "\n".join([
        "FAILED tests/test_app.py::test_main - AssertionError: boom",
        "TOTAL                              120     18    85%",
        "========= 1 failed, 7 passed in 0.42s =========",
    ])

    result = parse_test_output(CommandOutput(returncode=1, stdout=stdout, stderr=""))

    assert (result.passed, result.failed, result.total) == (7, 1, 8)
    assert result.coverage == 85.0
    detail = result.failure_details[0]
    assert detail.test_id == "tests/test_app.py::test_main"
    assert detail.path == "tests/test_app.py"


def test_no_tests_collected_is_not_a_failure():
    result = parse_test_output(CommandOutput(returncode=5, stdout="no tests ran in 0.01s", stderr=""))

    assert result.ok
    assert result.total == 0


def test_lint_json_categorised_by_longest_prefix(tmp_path: Path):
    config = LintCommandConfig(
        command="ruff check",
        categories={"C": "style", "C90": "complexity", "S": "unsafe"},
        error_rules=["S"],
    )
    lint = ShellLintCollaborator(config, tmp_path)
    stdout = json.dumps([
        {"code": "C901", "message": "`run` is too complex (14 > 10)",
         "filename": str(tmp_path / "src" / "app.py"), "location": {"row": 4}},
        {"code": "S307", "message": "Use of possibly insecure function",
         "filename": str(tmp_path / "src" / "util.py"), "location": {"row": 9}},
        {"code": "X1", "message": "other", "filename": "elsewhere.py", "location": {"row": 1}},
    ])

    findings = lint.parse(stdout)

    assert [f.category for f in findings] == ["complexity", "unsafe", "other"]
    assert findings[0].value == 14.0
    assert findings[0].path == "src/app.py"
    assert [f.severity for f in findings] == ["warning", "error", "warning"]


def test_shell_build_runs_configured_command(tmp_path: Path):
    command = f'{sys.executable} -c "print(\'src/app.py:1: error: boom\')"'
    build = ShellBuildCollaborator(CommandConfig(command=command))

    result = run(build.build(WorkspaceSnapshot(root=tmp_path)))

    assert result.error_count == 1


def test_disabled_build_reports_clean(tmp_path: Path):
    result = run(ShellBuildCollaborator(CommandConfig()).build(WorkspaceSnapshot(root=tmp_path)))

    assert result.ok
