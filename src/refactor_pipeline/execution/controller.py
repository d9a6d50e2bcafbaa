"""Sequential change execution with verification and rollback.

Changes run strictly one at a time in plan order, so every intermediate
tree is independently buildable. Within one change, the build check and the
static check run in parallel against the same tree and are joined before
tests run. The first hard failure cancels the other check.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..collaborators.base import Collaborators, TestScope, WorkspaceSnapshot
from ..config import PipelineConfig
from ..errors import (
    BlockingDependency,
    BuildFailure,
    EditConflict,
    InvalidChangeSet,
    PipelineError,
    TestFailure,
)
from ..models import Change, ChangeStatus, utc_now
from ..planning.sequencer import SequencedPlan
from ..utils.logger import get_logger
from .edits import LineDelta, apply_change
from .snapshot import SnapshotStore

logger = get_logger(__name__)

RETRYABLE = (ChangeStatus.PENDING, ChangeStatus.FAILED, ChangeStatus.ROLLED_BACK)


@dataclass
class ExecutionLogEntry:
    change_id: str
    status: ChangeStatus
    added: int = 0
    removed: int = 0
    files: dict[str, dict[str, int]] = field(default_factory=dict)
    tests_run: list[str] = field(default_factory=list)
    failure: Optional[dict[str, Any]] = None
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> dict:
        return {
            "change_id": self.change_id,
            "status": self.status.value,
            "added": self.added,
            "removed": self.removed,
            "files": self.files,
            "tests_run": self.tests_run,
            "failure": self.failure,
            "timestamp": self.timestamp,
        }


@dataclass
class ExecutionReport:
    """Outcome of one ``run`` call."""

    entries: list[ExecutionLogEntry] = field(default_factory=list)
    halted_at: Optional[str] = None
    error: Optional[PipelineError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "halted_at": self.halted_at,
            "error": self.error.to_dict() if self.error else None,
        }


def select_tests(coverage: dict[str, list[str]], files: Iterable[str]) -> list[str]:
    """Tests whose declared coverage globs match any of ``files``.

    A changed file that is itself a declared test selects that test.
    """
    files = list(files)
    selected = []
    for test, patterns in coverage.items():
        if test in files or any(fnmatch(f, p) for f in files for p in patterns):
            selected.append(test)
    return selected


ProgressCallback = Callable[[str, int, int], None]


class ExecutionController:
    """Walks a sequenced plan, verifying and rolling back changes."""

    def __init__(
        self,
        project_path: Path,
        plan: SequencedPlan,
        collaborators: Collaborators,
        config: PipelineConfig,
        snapshots: SnapshotStore,
        *,
        applied: Optional[list[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self.plan = plan
        self.collaborators = collaborators
        self.config = config
        self.snapshots = snapshots
        self.applied: list[str] = list(applied or [])
        self.on_progress = on_progress

    def _change(self, change_id: str) -> Change:
        change = self.plan.get(change_id)
        if change is None:
            raise InvalidChangeSet(f"Unknown change {change_id}", change_id=change_id)
        return change

    async def run(self, change_id: Optional[str] = None) -> ExecutionReport:
        """Execute one change, or every change not yet completed.

        Never raises for change-level failures; the error and the halting
        change are returned in the report.
        """
        report = ExecutionReport()
        if change_id is not None:
            targets = [self._change(change_id)]
        else:
            targets = [c for c in self.plan.changes if c.status != ChangeStatus.COMPLETED]

        total = len(targets)
        for i, change in enumerate(targets, start=1):
            if change.status == ChangeStatus.COMPLETED:
                logger.info(f"Change {change.id} already completed")
                continue
            if self.on_progress:
                self.on_progress(f"Applying {change.id}: {change.title}", i, total)
            try:
                entry = await self.execute_change(change)
            except PipelineError as e:
                report.entries.append(ExecutionLogEntry(
                    change_id=change.id,
                    status=change.status,
                    failure=e.to_dict(),
                ))
                report.halted_at = change.id
                report.error = e
                logger.error(f"Pipeline halted at {change.id}: {e.message}")
                break
            report.entries.append(entry)
        return report

    async def execute_change(self, change: Change) -> ExecutionLogEntry:
        """Apply, verify and test a single change.

        Raises:
            BlockingDependency: If a prerequisite is not completed; nothing
                is touched in that case
            EditConflict: If a touched file cannot be read or escapes the
                project; the change is marked failed before anything is
                written
            EditConflict, BuildFailure, TestFailure: After the snapshot has
                been restored and the change marked failed
        """
        if change.status not in RETRYABLE:
            raise BlockingDependency(
                f"Change {change.id} is {change.status.value}",
                change_id=change.id,
                status=change.status.value,
            )

        blocking = [
            dep for dep in self.plan.prerequisites.get(change.id, [])
            if self._change(dep).status != ChangeStatus.COMPLETED
        ]
        if blocking:
            raise BlockingDependency(
                f"Change {change.id} is blocked by incomplete prerequisite(s): {', '.join(blocking)}",
                change_id=change.id,
                blocking=blocking,
            )

        paths = change.touched_paths()
        try:
            snapshot = self.snapshots.capture(change.id, paths)
        except OSError as e:
            change.status = ChangeStatus.FAILED
            raise EditConflict(
                f"Cannot snapshot files of change {change.id}: {e}",
                change_id=change.id,
                path=str(e.filename) if e.filename else None,
                reason=e.strerror or str(e),
            ) from e
        except PipelineError:
            change.status = ChangeStatus.FAILED
            raise
        change.status = ChangeStatus.IN_PROGRESS
        logger.info(f"Executing {change.id} ({len(paths)} file(s))")

        try:
            deltas = apply_change(self.project_path, change)
            await self._verify(change, WorkspaceSnapshot(root=self.project_path, files=tuple(paths)))
            tests_run = await self._run_tests(change, paths)
        except (Exception, asyncio.CancelledError):
            self.snapshots.restore(snapshot)
            change.status = ChangeStatus.FAILED
            logger.error(f"Change {change.id} failed; snapshot restored")
            raise

        change.status = ChangeStatus.COMPLETED
        if change.id in self.applied:
            self.applied.remove(change.id)
        self.applied.append(change.id)

        total = LineDelta()
        for delta in deltas.values():
            total += delta
        logger.info(f"Change {change.id} completed (+{total.added} -{total.removed})")
        return ExecutionLogEntry(
            change_id=change.id,
            status=ChangeStatus.COMPLETED,
            added=total.added,
            removed=total.removed,
            files={p: {"added": d.added, "removed": d.removed} for p, d in deltas.items()},
            tests_run=tests_run,
        )

    async def _guarded(
        self,
        step: str,
        change_id: str,
        call: Awaitable[Any],
        timeout: float,
        error_type: type[PipelineError],
    ) -> Any:
        """Await a collaborator call; a timeout or crash fails the step."""
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise error_type(
                f"{step} timed out after {timeout:g}s for change {change_id}",
                change_id=change_id,
                step=step,
                timeout=timeout,
            ) from e
        except PipelineError:
            raise
        except Exception as e:
            raise error_type(
                f"{step} collaborator failed for change {change_id}: {e}",
                change_id=change_id,
                step=step,
            ) from e

    async def _check_build(self, change: Change, snapshot: WorkspaceSnapshot) -> None:
        result = await self._guarded(
            "build",
            change.id,
            self.collaborators.build.build(snapshot),
            self.config.build.timeout,
            BuildFailure,
        )
        if not result.ok:
            raise BuildFailure(
                f"Build failed for change {change.id}: {result.error_count} error(s)",
                change_id=change.id,
                error_count=result.error_count,
                warning_count=result.warning_count,
                diagnostics=[d.to_dict() for d in result.diagnostics],
            )

    async def _check_static(self, change: Change, snapshot: WorkspaceSnapshot) -> None:
        findings = await self._guarded(
            "static check",
            change.id,
            self.collaborators.lint.lint(list(snapshot.files)),
            self.config.lint.timeout,
            BuildFailure,
        )
        errors = [f for f in findings if f.severity == "error"]
        if errors:
            raise BuildFailure(
                f"Static check failed for change {change.id}: {len(errors)} error finding(s)",
                change_id=change.id,
                findings=[f.to_dict() for f in errors],
            )

    async def _verify(self, change: Change, snapshot: WorkspaceSnapshot) -> None:
        checks = [asyncio.ensure_future(self._check_build(change, snapshot))]
        if self.collaborators.lint is not None:
            checks.append(asyncio.ensure_future(self._check_static(change, snapshot)))

        try:
            for finished in asyncio.as_completed(checks):
                await finished
        finally:
            for task in checks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*checks, return_exceptions=True)

    async def _run_tests(self, change: Change, paths: list[str]) -> list[str]:
        tests = select_tests(self.config.tests.coverage, paths)
        if not tests or self.collaborators.tests is None:
            logger.debug(f"No tests cover change {change.id}")
            return []

        result = await self._guarded(
            "tests",
            change.id,
            self.collaborators.tests.run_tests(TestScope(tests=tuple(tests), files=tuple(paths))),
            self.config.tests.timeout,
            TestFailure,
        )
        if not result.ok:
            raise TestFailure(
                f"{result.failed} of {result.total} test(s) failed for change {change.id}",
                change_id=change.id,
                passed=result.passed,
                failed=result.failed,
                total=result.total,
                failures=[f.to_dict() for f in result.failure_details],
            )
        return tests

    def rollback(self, from_change_id: Optional[str] = None) -> list[str]:
        """Undo applied changes from the failure point onward.

        The start point is ``from_change_id``, else the first failed change,
        else the first applied change. Snapshots are restored in reverse
        application order and every change from the start point on is marked
        rolled back.

        Returns:
            Ids of the changes marked rolled back
        """
        order = self.plan.order
        if from_change_id is not None:
            self._change(from_change_id)
            start = order.index(from_change_id)
        else:
            failed = [i for i, c in enumerate(self.plan.changes) if c.status == ChangeStatus.FAILED]
            applied = [order.index(cid) for cid in self.applied if cid in order]
            candidates = failed or applied
            if not candidates:
                logger.info("Nothing to roll back")
                return []
            start = min(candidates)

        affected = set(order[start:])
        for change_id in reversed(self.applied):
            if change_id not in affected:
                continue
            snapshot = self.snapshots.load(change_id)
            if snapshot is None:
                raise PipelineError(f"Missing snapshot for applied change {change_id}", change_id=change_id)
            self.snapshots.restore(snapshot)
        self.applied = [cid for cid in self.applied if cid not in affected]

        rolled_back = []
        for change in self.plan.changes[start:]:
            change.status = ChangeStatus.ROLLED_BACK
            rolled_back.append(change.id)
        logger.warning(f"Rolled back {len(rolled_back)} change(s) from {order[start]}")
        return rolled_back
