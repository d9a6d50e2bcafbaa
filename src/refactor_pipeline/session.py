"""The live pipeline session.

A session owns the phase machine, the artifact store and the change list
for one project. Only one session may be open per project at a time; the
lock file ``.refactor/session.lock`` holds the owner's pid. All state is
written to ``.refactor/session.json`` after every operation, so each CLI
command resumes exactly where the previous one stopped.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Iterable, Optional

from .collaborators.approval import ConsoleApproval
from .collaborators.base import (
    ApprovalCollaborator,
    BuildResult,
    Collaborators,
    Finding,
    TestResult,
    TestScope,
    WorkspaceSnapshot,
)
from .collaborators.commands import (
    ShellBuildCollaborator,
    ShellLintCollaborator,
    ShellTestCollaborator,
)
from .config import PipelineConfig
from .errors import GateFailure, IllegalTransition, SessionLocked
from .execution.controller import ExecutionController, ExecutionReport, select_tests
from .execution.snapshot import SnapshotStore
from .gates.evaluator import GateEvaluator, GateReport
from .gates.metrics import BUILD_METRICS, LINT_METRICS, TEST_METRICS, Baseline, collect_observations
from .models import Artifact, ArtifactKind, Change, ChangeStatus, GateVerdict, Phase
from .phases.machine import ROLLBACK_SOURCES, PhaseStateMachine
from .pipeline import CodeAnalyzer, FindingsReviewer, ProjectScanner, ReportGenerator
from .planning.sequencer import SequencedPlan, Sequencer
from .store.artifacts import ArtifactStore
from .utils.file_ops import FileManager
from .utils.logger import get_logger

logger = get_logger(__name__)

SESSION_FILE = "session.json"
LOCK_FILE = "session.lock"
VALIDATION_SCOPES = ("quick", "full", "all")


def default_collaborators(
    project_path: Path,
    config: PipelineConfig,
    approval: Optional[ApprovalCollaborator] = None,
) -> Collaborators:
    """Shell-command collaborators as configured in ``pipeline.yaml``."""
    return Collaborators(
        build=ShellBuildCollaborator(config.build),
        tests=ShellTestCollaborator(config.tests, project_path) if config.tests.enabled else None,
        lint=ShellLintCollaborator(config.lint, project_path) if config.lint.enabled else None,
        approval=approval or ConsoleApproval(),
    )


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class PipelineSession:
    """Single-writer owner of all pipeline state for one project."""

    def __init__(
        self,
        project_path: Path,
        config: PipelineConfig,
        collaborators: Collaborators,
        *,
        lock: bool = True,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self.config = config
        self.collaborators = collaborators
        self.files = FileManager(project_path=self.project_path)
        self.files.ensure_refactor_dir()
        self.store = ArtifactStore(self.files)
        self.snapshots = SnapshotStore(self.project_path, self.files.refactor_dir / "snapshots")
        self._lock_path = self.files.refactor_dir / LOCK_FILE
        self._locked = False

        self.machine = PhaseStateMachine()
        self.sequenced: Optional[SequencedPlan] = None
        self.applied: list[str] = []
        self.execution_entries: list[dict] = []

        if lock:
            self._acquire_lock()
        self._load()

    @classmethod
    def open(
        cls,
        project_path: Path,
        config: Optional[PipelineConfig] = None,
        collaborators: Optional[Collaborators] = None,
    ) -> PipelineSession:
        config = config or PipelineConfig.load(project_path)
        collaborators = collaborators or default_collaborators(Path(project_path), config)
        return cls(project_path, config, collaborators)

    def __enter__(self) -> PipelineSession:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- ownership ----------------------------------------------------------

    def _acquire_lock(self) -> None:
        for _ in range(2):
            try:
                fd = os.open(self._lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                owner = self._lock_owner()
                if owner is not None and _pid_alive(owner):
                    raise SessionLocked(
                        f"Another session (pid {owner}) owns {self.project_path}",
                        pid=owner,
                        lock=str(self._lock_path),
                    )
                logger.warning(f"Reclaiming stale session lock (pid {owner})")
                self._lock_path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as handle:
                handle.write(str(os.getpid()))
            self._locked = True
            return
        raise SessionLocked(f"Could not acquire {self._lock_path}", lock=str(self._lock_path))

    def _lock_owner(self) -> Optional[int]:
        try:
            return int(self._lock_path.read_text().strip())
        except (OSError, ValueError):
            return None

    def close(self) -> None:
        """Persist state and release the lock."""
        self.save()
        if self._locked:
            self._lock_path.unlink(missing_ok=True)
            self._locked = False

    # -- persistence --------------------------------------------------------

    @property
    def _state_path(self) -> Path:
        return self.files.refactor_dir / SESSION_FILE

    def _load(self) -> None:
        data = self.files.read_json(self._state_path)
        if not data:
            return
        self.machine = PhaseStateMachine.from_dict(data.get("machine", {}))
        self.sequenced = SequencedPlan.from_dict(data["plan"]) if data.get("plan") else None
        self.applied = list(data.get("applied", []))
        self.execution_entries = list(data.get("execution_entries", []))

    def save(self) -> None:
        self.files.write_json(self._state_path, {
            "machine": self.machine.to_dict(),
            "plan": self.sequenced.to_dict() if self.sequenced else None,
            "applied": self.applied,
            "execution_entries": self.execution_entries,
        })

    @property
    def phase(self) -> Phase:
        return self.machine.phase

    def _put(self, kind: ArtifactKind, content: dict, sources: Iterable[Optional[Artifact]] = ()) -> Artifact:
        return self.store.put(
            kind,
            content,
            self.phase,
            [a.id for a in sources if a is not None],
        )

    def _read(self, kind: ArtifactKind) -> Optional[Artifact]:
        return self.store.read(kind, self.phase)

    def _require_artifact(self, kind: ArtifactKind) -> Artifact:
        artifact = self._read(kind)
        if artifact is None:
            raise IllegalTransition(
                f"Phase '{self.phase.value}' needs a '{kind.value}' artifact, none exists",
                phase=self.phase.value,
                kind=kind.value,
            )
        return artifact

    # -- phases -------------------------------------------------------------

    def intake(self) -> Artifact:
        """Scan the project and record the context artifact."""
        self.machine.require(Phase.INTAKE, operation="intake")
        content = ProjectScanner(self.project_path, self.config).scan()
        artifact = self._put(ArtifactKind.CONTEXT, content)
        self.machine.advance(artifact.id)
        self.save()
        return artifact

    async def analyze(self) -> Artifact:
        """Measure the untouched project and record the analysis artifact."""
        self.machine.require(Phase.UNDERSTANDING, operation="analyze")
        context = self._require_artifact(ArtifactKind.CONTEXT)
        analyzer = CodeAnalyzer(self.project_path, self.collaborators, self.config)
        result = await analyzer.analyze(context.content.get("files", []))
        artifact = self._put(ArtifactKind.ANALYSIS, result.to_dict(), [context])
        self.machine.advance(artifact.id)
        self.save()
        return artifact

    def review(self) -> Artifact:
        """Rank the analysis findings into the review artifact."""
        self.machine.require(Phase.REVIEW, operation="review")
        analysis = self._require_artifact(ArtifactKind.ANALYSIS)
        content = FindingsReviewer(self.config).review(analysis.content)
        artifact = self._put(ArtifactKind.REVIEW, content, [analysis])
        self.machine.advance(artifact.id)
        self.save()
        return artifact

    def plan(self, changes: list[Change], source: str = "") -> Artifact:
        """Sequence a proposed change set into a new plan version.

        Re-planning is allowed while in the plan phase; every new version
        needs its own approval.
        """
        self.machine.require(Phase.PLAN, operation="plan")
        review = self._require_artifact(ArtifactKind.REVIEW)
        sequenced = Sequencer().sequence(changes)
        content = sequenced.to_dict()
        content["source"] = source
        artifact = self._put(ArtifactKind.PLAN, content, [review])
        self.sequenced = sequenced
        self.applied = []
        self.execution_entries = []
        self.save()
        return artifact

    def current_plan_artifact(self) -> Artifact:
        self.machine.require(Phase.PLAN, operation="approve")
        plan = self.store.get(ArtifactKind.PLAN)
        if plan is None or self.sequenced is None:
            raise IllegalTransition("No plan has been recorded yet", phase=self.phase.value)
        return plan

    def approve(self, approved: bool = True) -> Artifact:
        """Record an operator decision for the current plan version."""
        plan = self.current_plan_artifact()
        self.machine.record_approval(plan.id, approved)
        self.save()
        return plan

    async def request_approval(self, collaborator: Optional[ApprovalCollaborator] = None) -> bool:
        """Ask the approval collaborator; a timeout counts as a refusal."""
        plan = self.current_plan_artifact()
        collaborator = collaborator or self.collaborators.approval
        if collaborator is None:
            return self.machine.is_approved(plan.id)

        try:
            approved = await asyncio.wait_for(
                collaborator.request_approval(plan.id), self.config.approval_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Approval for {plan.id} timed out after {self.config.approval_timeout:g}s")
            approved = False
        self.machine.record_approval(plan.id, approved)
        self.save()
        return approved

    async def begin_execution(self) -> None:
        """Move from plan to execution once the current plan is approved."""
        plan = self.current_plan_artifact()
        if not self.machine.is_approved(plan.id):
            await self.request_approval()
        self.machine.advance(plan.id)
        self.save()

    async def execute(self, change_id: Optional[str] = None, on_progress=None) -> ExecutionReport:
        """Apply the plan, or one change of it, and record the execution log.

        Raises:
            The change-level error (BuildFailure, TestFailure, EditConflict,
            BlockingDependency) after the log artifact has been written
        """
        if self.phase == Phase.PLAN:
            await self.begin_execution()
        self.machine.require(Phase.EXECUTION, operation="execute")
        plan_artifact = self._require_artifact(ArtifactKind.PLAN)
        if self.sequenced is None:
            raise IllegalTransition("Session has no sequenced plan", phase=self.phase.value)

        controller = ExecutionController(
            self.project_path,
            self.sequenced,
            self.collaborators,
            self.config,
            self.snapshots,
            applied=self.applied,
            on_progress=on_progress,
        )
        try:
            report = await controller.run(change_id)
        finally:
            self.applied = controller.applied
            self.save()

        self.execution_entries.extend(e.to_dict() for e in report.entries)
        log = self._put(ArtifactKind.EXECUTION_LOG, self._execution_content(report), [plan_artifact])

        if report.error is None and all(c.status == ChangeStatus.COMPLETED for c in self.sequenced.changes):
            self.machine.advance(log.id)
        self.save()

        if report.error is not None:
            raise report.error
        return report

    def _execution_content(self, report: Optional[ExecutionReport] = None) -> dict:
        return {
            "entries": list(self.execution_entries),
            "statuses": {c.id: c.status.value for c in self.sequenced.changes} if self.sequenced else {},
            "applied": list(self.applied),
            "halted_at": report.halted_at if report else None,
            "error": report.error.to_dict() if report and report.error else None,
        }

    def applied_changes(self) -> list[Change]:
        if self.sequenced is None:
            return []
        return [c for c in (self.sequenced.get(cid) for cid in self.applied) if c is not None]

    async def validate(self, scope: str = "quick") -> GateReport:
        """Measure the changed project and evaluate the gates.

        Raises:
            GateFailure: If the verdict is failed; the machine is then in
                the failed phase
        """
        if scope not in VALIDATION_SCOPES:
            raise ValueError(f"Unknown validation scope {scope!r}; use one of {', '.join(VALIDATION_SCOPES)}")
        self.machine.require(Phase.VALIDATION, operation="validate")

        context = self._require_artifact(ArtifactKind.CONTEXT)
        analysis = self._require_artifact(ArtifactKind.ANALYSIS)
        plan = self._require_artifact(ArtifactKind.PLAN)
        execution_log = self._require_artifact(ArtifactKind.EXECUTION_LOG)

        files = context.content.get("files", [])
        changed = sorted({p for c in self.applied_changes() for p in c.touched_paths()})
        build, tests, findings = await self._measure(scope, files, changed)

        observations = collect_observations(
            build=build if build is not None else BuildResult(),
            tests=tests,
            findings=findings or [],
            files=files,
            baseline=Baseline.from_dict(analysis.content.get("baseline")),
        )
        if build is None:
            observations.unobserved(BUILD_METRICS)
        if tests is None and self.collaborators.tests is not None:
            observations.unobserved(TEST_METRICS)
        if findings is None:
            observations.unobserved(LINT_METRICS)

        report = GateEvaluator(self.config.gates).evaluate(
            observations.values,
            affected_files=observations.affected_files,
            changes=self.applied_changes(),
            include_advisory=scope == "all",
        )

        content = report.to_dict()
        content["scope"] = scope
        content["changed_files"] = changed
        artifact = self._put(
            ArtifactKind.VALIDATION_REPORT, content, [analysis, plan, execution_log]
        )
        self.machine.record_verdict(report.verdict)
        self.machine.advance(artifact.id)
        self.save()

        if report.verdict == GateVerdict.FAILED:
            raise GateFailure(
                f"Gate failed with {len(report.failures)} failing metric(s)",
                artifact_id=artifact.id,
                verdict=report.verdict.value,
                failures=[m.to_dict() for m in report.failures],
            )
        return report

    async def _measure(
        self, scope: str, files: list[str], changed: list[str]
    ) -> tuple[Optional[BuildResult], Optional[TestResult], Optional[list[Finding]]]:
        """Run build, tests and lint concurrently over the changed project.

        A collaborator that times out yields a missing measurement, which
        fails its metrics.
        """
        async def timed(call, timeout: float, step: str):
            try:
                return await asyncio.wait_for(call, timeout)
            except asyncio.TimeoutError:
                logger.error(f"Validation {step} timed out after {timeout:g}s")
                return None

        async def tests() -> Optional[TestResult]:
            if self.collaborators.tests is None:
                return None
            selected = select_tests(self.config.tests.coverage, changed) if scope == "quick" else []
            test_scope = TestScope(tests=tuple(selected), files=tuple(changed), full=not selected)
            return await timed(self.collaborators.tests.run_tests(test_scope), self.config.tests.timeout, "tests")

        async def lint() -> Optional[list[Finding]]:
            if self.collaborators.lint is None:
                return []
            return await timed(self.collaborators.lint.lint(files), self.config.lint.timeout, "lint")

        snapshot = WorkspaceSnapshot(root=self.project_path, files=tuple(changed))
        return await asyncio.gather(
            timed(self.collaborators.build.build(snapshot), self.config.build.timeout, "build"),
            tests(),
            lint(),
        )

    def explain(self) -> Artifact:
        """Write the explanation artifact and summary, completing the run."""
        self.machine.require(Phase.EXPLANATION, operation="explain")
        context = self._read(ArtifactKind.CONTEXT)
        plan = self._read(ArtifactKind.PLAN)
        execution_log = self._read(ArtifactKind.EXECUTION_LOG)
        validation = self._require_artifact(ArtifactKind.VALIDATION_REPORT)

        generator = ReportGenerator(self.files.refactor_dir / "summary.md")
        content = generator.generate(context, plan, execution_log, validation)
        artifact = self._put(
            ArtifactKind.EXPLANATION, content, [context, plan, execution_log, validation]
        )
        self.machine.advance(artifact.id)
        self.save()
        return artifact

    def rollback(self, change_id: Optional[str] = None) -> list[str]:
        """Restore snapshots from the failure point and return to execution."""
        self.machine.require(*ROLLBACK_SOURCES, operation="rollback")
        if self.sequenced is None:
            raise IllegalTransition("Nothing to roll back: no plan", phase=self.phase.value)

        controller = ExecutionController(
            self.project_path,
            self.sequenced,
            self.collaborators,
            self.config,
            self.snapshots,
            applied=self.applied,
        )
        rolled_back = controller.rollback(change_id)
        self.applied = controller.applied
        self.execution_entries.extend(
            {"change_id": cid, "status": ChangeStatus.ROLLED_BACK.value} for cid in rolled_back
        )

        validation = self.store.get(ArtifactKind.VALIDATION_REPORT)
        self.machine.rollback_return(validation.id if validation and self.phase != Phase.EXECUTION else None)
        plan_artifact = self._require_artifact(ArtifactKind.PLAN)
        self._put(ArtifactKind.EXECUTION_LOG, self._execution_content(), [plan_artifact])
        self.save()
        return rolled_back

    def reset(self) -> list[str]:
        """Archive every artifact and start over from intake.

        Working-tree files are left as they are; roll back first to undo
        applied changes.
        """
        archived = self.store.archive_all()
        self.machine.reset()
        self.sequenced = None
        self.applied = []
        self.execution_entries = []
        self.save()
        logger.info(f"Session reset; archived {len(archived)} artifact(s)")
        return archived

    def status(self) -> dict:
        plan = self.store.get(ArtifactKind.PLAN)
        return {
            "phase": self.phase.value,
            "plan_artifact_id": plan.id if plan else None,
            "plan_approved": self.machine.is_approved(plan.id) if plan else False,
            "verdict": self.machine.verdict.value if self.machine.verdict else None,
            "changes": [
                {"id": c.id, "title": c.title, "status": c.status.value, "risk_level": c.risk_level.value}
                for c in (self.sequenced.changes if self.sequenced else [])
            ],
            "applied": list(self.applied),
            "transitions": [r.to_dict() for r in self.machine.log],
        }
