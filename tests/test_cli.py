"""Tests for the typer CLI: phase commands, exit codes and the run command."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from conftest import FakeBuild, FakeLint, FakeTests, FixedApproval
from refactor_pipeline import cli
from refactor_pipeline.collaborators import Collaborators
from refactor_pipeline.errors import (
    EXIT_BUILD_FAILURE,
    EXIT_ILLEGAL_TRANSITION,
    EXIT_INVALID_INPUT,
    EXIT_SESSION_LOCKED,
)

runner = CliRunner()


@pytest.fixture(autouse=True)
def fake_collaborators(monkeypatch):
    def factory(project_path, config, approval=None):
        return Collaborators(
            build=FakeBuild(),
            tests=FakeTests(),
            lint=FakeLint(),
            approval=FixedApproval(False),
        )

    monkeypatch.setattr(cli, "default_collaborators", factory)


@pytest.fixture
def changes_file(project: Path) -> Path:
    path = project / "changes.yaml"
    path.write_text(yaml.safe_dump({
        "changes": [
            {
                "id": "app",
                "title": "Annotate main",
                "depends_on": ["util"],
                "edits": [{"path": "src/app.py", "old": "def main():", "new": "def main() -> int:"}],
            },
            {
                "id": "util",
                "title": "Bump helper",
                "risk_level": "medium",
                "edits": [{"path": "src/util.py", "old": "return 1", "new": "return 10"}],
            },
        ]
    }))
    return path


def invoke(project: Path, *args: str):
    return runner.invoke(cli.app, ["--project", str(project), *args])


def test_phase_by_phase_to_completion(project: Path, changes_file: Path):
    assert invoke(project, "intake").exit_code == 0
    assert invoke(project, "analyze").exit_code == 0
    assert invoke(project, "review").exit_code == 0

    result = invoke(project, "plan", "--changes", str(changes_file))
    assert result.exit_code == 0, result.output
    assert "plan:v1" in result.output

    assert invoke(project, "approve").exit_code == 0
    assert invoke(project, "execute").exit_code == 0

    result = invoke(project, "validate", "--scope", "all")
    assert result.exit_code == 0, result.output
    assert "PASSED" in result.output

    assert invoke(project, "explain").exit_code == 0
    assert (project / ".refactor" / "summary.md").exists()

    result = invoke(project, "status")
    assert "complete" in result.output


def test_out_of_order_command_exits_with_transition_code(project: Path):
    result = invoke(project, "review")

    assert result.exit_code == EXIT_ILLEGAL_TRANSITION
    assert "IllegalTransition" in result.output


def test_rejected_plan_cannot_execute(project: Path, changes_file: Path):
    for args in (["intake"], ["analyze"], ["review"], ["plan", "--changes", str(changes_file)]):
        assert invoke(project, *args).exit_code == 0

    assert invoke(project, "approve", "--reject").exit_code == 0
    result = invoke(project, "execute")

    assert result.exit_code == EXIT_ILLEGAL_TRANSITION
    assert "ApprovalDenied" in result.output


def test_build_failure_exit_code_and_rollback(project: Path, tmp_path: Path):
    broken = tmp_path / "broken.json"
    broken.write_text(
        '{"changes": [{"id": "util", "edits": '
        '[{"path": "src/util.py", "old": "return 1", "new": "return 1  # BROKEN"}]}]}'
    )

    result = invoke(project, "run", "--changes", str(broken), "--yes", "--quiet")

    assert result.exit_code == EXIT_BUILD_FAILURE
    assert (project / "src" / "util.py").read_text() == "def helper():\n    return 1\n"

    result = invoke(project, "rollback")
    assert result.exit_code == 0
    assert "util: rolled back" in result.output


def test_invalid_change_set_exit_code(project: Path, tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("changes:\n  - id: a\n    depends_on: [zzz]\n")
    for command in ("intake", "analyze", "review"):
        invoke(project, command)

    result = invoke(project, "plan", "--changes", str(bad))

    assert result.exit_code == EXIT_INVALID_INPUT


def test_run_end_to_end(project: Path, changes_file: Path):
    result = invoke(project, "run", "--changes", str(changes_file), "--yes", "--scope", "full")

    assert result.exit_code == 0, result.output
    assert "SUCCESS" in result.output
    assert (project / "src" / "app.py").read_bytes() == b"def main() -> int:\r\n    return helper()\r\n"


def test_locked_session_exit_code(project: Path):
    lock = project / ".refactor" / "session.lock"
    lock.parent.mkdir(parents=True)
    lock.write_text(str(os.getpid()))

    result = invoke(project, "status")

    assert result.exit_code == EXIT_SESSION_LOCKED


def test_reset_requires_confirmation(project: Path):
    invoke(project, "intake")

    result = runner.invoke(cli.app, ["--project", str(project), "reset"], input="n\n")
    assert result.exit_code == 0
    assert "understanding" in invoke(project, "status").output

    assert invoke(project, "reset", "--yes").exit_code == 0
    assert "intake" in invoke(project, "status").output


def test_missing_config_file_is_invalid_input(project: Path):
    result = invoke(project, "--config", "nope.yaml", "status")

    assert result.exit_code == EXIT_INVALID_INPUT


def test_malformed_change_record_exit_code(project: Path, tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("changes:\n  - id: a\n    depends_on: null\n")
    for command in ("intake", "analyze", "review"):
        invoke(project, command)

    result = invoke(project, "plan", "--changes", str(bad))

    assert result.exit_code == EXIT_INVALID_INPUT
