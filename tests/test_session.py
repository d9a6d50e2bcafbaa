"""Tests for the persisted, single-writer pipeline session."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import FakeBuild, FakeLint, FakeTests, FixedApproval, SlowApproval, make_change, run
from refactor_pipeline.collaborators import Collaborators, Finding
from refactor_pipeline.errors import (
    ApprovalDenied,
    BuildFailure,
    GateFailure,
    IllegalTransition,
    SessionLocked,
)
from refactor_pipeline.models import ArtifactKind, ChangeStatus, Edit, GateVerdict, Phase
from refactor_pipeline.session import PipelineSession


def changes(broken: bool = False):
    util_new = "    return 10  # BROKEN\n" if broken else "    return 10\n"
    return [
        make_change("util", edits=(Edit("src/util.py", "    return 1\n", util_new),)),
        make_change("app", depends_on=("util",),
                    edits=(Edit("src/app.py", "def main():", "def main() -> int:"),)),
    ]


def to_plan(session: PipelineSession) -> None:
    session.intake()
    run(session.analyze())
    session.review()


@pytest.fixture
def session(project, config, fakes):
    with PipelineSession(project, config, fakes) as s:
        yield s


def test_happy_path_reaches_complete(session: PipelineSession, project: Path):
    to_plan(session)
    plan = session.plan(changes())
    session.approve()

    run(session.execute())
    assert session.phase == Phase.VALIDATION

    report = run(session.validate("quick"))
    assert report.verdict == GateVerdict.PASSED

    session.explain()
    assert session.phase == Phase.COMPLETE
    assert [r.to_phase for r in session.machine.log] == [
        Phase.UNDERSTANDING, Phase.REVIEW, Phase.PLAN, Phase.EXECUTION,
        Phase.VALIDATION, Phase.EXPLANATION, Phase.COMPLETE,
    ]
    assert session.machine.log[3].triggering_artifact_id == plan.id

    explanation = session.store.get(ArtifactKind.EXPLANATION)
    assert explanation.content["status"] == "SUCCESS"
    assert explanation.content["changes_completed"] == 2
    assert "validation_report:v1" in explanation.source_artifact_ids
    summary = (project / ".refactor" / "summary.md").read_text(encoding="utf-8")
    assert "Changes completed: 2 / 2" in summary


def test_phase_operations_refuse_out_of_order(session: PipelineSession):
    with pytest.raises(IllegalTransition):
        session.review()
    with pytest.raises(IllegalTransition):
        run(session.validate())

    assert session.phase == Phase.INTAKE
    assert session.store.get(ArtifactKind.REVIEW) is None


def test_unknown_validation_scope_rejected(session: PipelineSession):
    with pytest.raises(ValueError):
        run(session.validate("everything"))


def test_denied_approval_keeps_plan_phase(project, config):
    collaborators = Collaborators(build=FakeBuild(), tests=FakeTests(), lint=FakeLint(),
                                  approval=FixedApproval(False))
    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        session.plan(changes())

        with pytest.raises(ApprovalDenied):
            run(session.execute())

        assert session.phase == Phase.PLAN
        assert (project / "src" / "util.py").read_text() == "def helper():\n    return 1\n"


def test_approval_timeout_counts_as_refusal(project, config):
    config.approval_timeout = 0.05
    collaborators = Collaborators(build=FakeBuild(), approval=SlowApproval(delay=1.0))
    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        session.plan(changes())

        assert run(session.request_approval()) is False
        assert session.phase == Phase.PLAN


def test_replan_needs_fresh_approval(project, config):
    collaborators = Collaborators(build=FakeBuild(), approval=FixedApproval(False))
    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        first = session.plan(changes())
        session.approve()
        second = session.plan(changes())

        assert (first.id, second.id) == ("plan:v1", "plan:v2")
        assert session.status()["plan_approved"] is False
        with pytest.raises(ApprovalDenied):
            run(session.begin_execution())


def test_execution_failure_stays_in_execution_and_logs(session: PipelineSession, project: Path):
    to_plan(session)
    session.plan(changes(broken=True))
    session.approve()

    with pytest.raises(BuildFailure):
        run(session.execute())

    assert session.phase == Phase.EXECUTION
    log = session.store.get(ArtifactKind.EXECUTION_LOG)
    assert log.content["halted_at"] == "util"
    assert log.content["statuses"] == {"util": "failed", "app": "pending"}
    assert log.content["error"]["error"] == "BuildFailure"
    assert (project / "src" / "util.py").read_text() == "def helper():\n    return 1\n"


def test_single_change_execution_stays_in_execution(session: PipelineSession):
    to_plan(session)
    session.plan(changes())
    session.approve()

    run(session.execute("util"))
    assert session.phase == Phase.EXECUTION
    assert session.applied == ["util"]

    run(session.execute("app"))
    assert session.phase == Phase.VALIDATION


def test_gate_failure_then_rollback(project, config):
    race = Finding(rule="ASYNC101", path="src/app.py", category="concurrency")
    collaborators = Collaborators(build=FakeBuild(), tests=FakeTests(), lint=FakeLint([race]),
                                  approval=FixedApproval(True))
    original = {p: p.read_bytes() for p in (project / "src").iterdir()}

    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        session.plan(changes())
        session.approve()
        run(session.execute())

        with pytest.raises(GateFailure) as excinfo:
            run(session.validate("full"))

        assert session.phase == Phase.FAILED
        failure = excinfo.value.details["failures"][0]
        assert failure["name"] == "race_diagnostics"
        assert failure["responsible_change_id"] == "app"
        with pytest.raises(IllegalTransition):
            session.explain()

        rolled_back = session.rollback()

        assert rolled_back == ["util", "app"]
        assert session.phase == Phase.EXECUTION
        assert {p: p.read_bytes() for p in (project / "src").iterdir()} == original
        assert session.store.get(ArtifactKind.EXECUTION_LOG).content["statuses"] == {
            "util": "rolled_back",
            "app": "rolled_back",
        }


def test_quick_validation_runs_covering_tests(project, config):
    tests = FakeTests()
    collaborators = Collaborators(build=FakeBuild(), tests=tests, lint=FakeLint(),
                                  approval=FixedApproval(True))
    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        session.plan(changes())
        session.approve()
        run(session.execute())
        report = run(session.validate("quick"))

    assert tests.scopes[-1].tests == ("tests/test_app.py",)
    assert report.metric("lint_findings").passed is None


def test_lint_timeout_during_validation_fails_the_gate(project, config):
    lint = FakeLint()
    collaborators = Collaborators(build=FakeBuild(), tests=FakeTests(), lint=lint,
                                  approval=FixedApproval(True))
    with PipelineSession(project, config, collaborators) as session:
        to_plan(session)
        session.plan(changes())
        session.approve()
        run(session.execute())

        lint.delay = 1.0
        config.lint.timeout = 0.05
        with pytest.raises(GateFailure) as excinfo:
            run(session.validate("full"))

    failures = {f["name"]: f for f in excinfo.value.details["failures"]}
    assert failures["race_diagnostics"]["observed_value"] is None
    assert "compiler_errors" not in failures


def test_state_persists_across_sessions(project, config, fakes):
    with PipelineSession(project, config, fakes) as session:
        to_plan(session)
        session.plan(changes())
        session.approve()

    with PipelineSession(project, config, fakes) as session:
        assert session.phase == Phase.PLAN
        assert session.sequenced.order == ["util", "app"]
        run(session.execute())
        assert session.phase == Phase.VALIDATION
        assert all(c.status == ChangeStatus.COMPLETED for c in session.sequenced.changes)


def test_second_writer_is_locked_out(project, config, fakes):
    with PipelineSession(project, config, fakes):
        with pytest.raises(SessionLocked) as excinfo:
            PipelineSession(project, config, fakes)
        assert excinfo.value.details["pid"] == os.getpid()

    with PipelineSession(project, config, fakes) as session:
        assert session.phase == Phase.INTAKE


def test_stale_lock_is_reclaimed(project, config, fakes):
    lock = project / ".refactor" / "session.lock"
    lock.parent.mkdir(parents=True, exist_ok=True)
    lock.write_text("99999999")

    with PipelineSession(project, config, fakes) as session:
        assert lock.read_text() == str(os.getpid())
        session.intake()

    assert not lock.exists()


def test_reset_archives_and_restarts(session: PipelineSession):
    to_plan(session)
    session.plan(changes())

    archived = session.reset()

    assert sorted(archived) == ["analysis:v1", "context:v1", "plan:v1", "review:v1"]
    assert session.phase == Phase.INTAKE
    assert session.sequenced is None
    assert session.intake().id == "context:v2"
