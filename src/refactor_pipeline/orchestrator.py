"""End-to-end driver for the refactoring pipeline.

Walks a session from whatever phase it is in to completion:
1. Project intake
2. Analysis baseline
3. Findings review
4. Change planning and approval
5. Sequential execution
6. Gate validation
7. Explanation and summary

Every step goes through ``PipelineSession``, so a run that halts can be
resumed by the per-phase CLI commands or by running again.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .collaborators.base import Collaborators
from .config import PipelineConfig
from .errors import EXIT_OK, IllegalTransition, PipelineError
from .models import Phase
from .planning.loader import ChangeSetLoader
from .session import PipelineSession
from .utils.logger import get_logger

logger = get_logger(__name__)

TOTAL_STEPS = 7


@dataclass
class PipelineResult:
    """Result from an end-to-end run."""

    success: bool
    summary: str
    phase: str
    verdict: Optional[str] = None
    exit_code: int = EXIT_OK
    error: Optional[dict] = None
    warnings: list[str] = field(default_factory=list)
    summary_path: Optional[Path] = None


@dataclass
class PipelineOrchestrator:
    """Drives one project through every remaining phase."""

    project_path: Path
    changes_path: Optional[Path] = None
    config: Optional[PipelineConfig] = None
    collaborators: Optional[Collaborators] = None
    approve: bool = False
    scope: str = "quick"
    on_progress: Optional[Callable[[str, int, int], None]] = None

    def __post_init__(self) -> None:
        self.project_path = Path(self.project_path).resolve()
        if self.changes_path is not None:
            self.changes_path = Path(self.changes_path).resolve()
        self._current_step = 0

    def _emit_progress(self, message: str, step: int) -> None:
        self._current_step = step
        if self.on_progress:
            self.on_progress(message, step, TOTAL_STEPS)
        logger.info(f"[{step}/{TOTAL_STEPS}] {message}")

    async def run_async(self) -> PipelineResult:
        """Run every remaining phase.

        Returns:
            PipelineResult; pipeline errors are reported in it, not raised
        """
        warnings: list[str] = []
        with PipelineSession.open(self.project_path, self.config, self.collaborators) as session:
            try:
                await self._drive(session, warnings)
            except PipelineError as e:
                logger.error(f"Pipeline halted in phase '{session.phase.value}': {e.message}")
                return PipelineResult(
                    success=False,
                    summary=f"Pipeline halted: {e.message}",
                    phase=session.phase.value,
                    verdict=session.machine.verdict.value if session.machine.verdict else None,
                    exit_code=e.exit_code,
                    error=e.to_dict(),
                    warnings=warnings,
                )

            verdict = session.machine.verdict.value if session.machine.verdict else None
            return PipelineResult(
                success=True,
                summary=f"Refactoring complete ({verdict})",
                phase=session.phase.value,
                verdict=verdict,
                warnings=warnings,
                summary_path=session.files.refactor_dir / "summary.md",
            )

    async def _drive(self, session: PipelineSession, warnings: list[str]) -> None:
        planned = False
        while session.phase != Phase.COMPLETE:
            phase = session.phase
            if phase == Phase.INTAKE:
                self._emit_progress("Scanning project...", 1)
                session.intake()
            elif phase == Phase.UNDERSTANDING:
                self._emit_progress("Measuring baseline...", 2)
                await session.analyze()
            elif phase == Phase.REVIEW:
                self._emit_progress("Reviewing findings...", 3)
                review = session.review()
                warnings.extend(review.content.get("recommendations", []))
            elif phase == Phase.PLAN:
                self._emit_progress("Sequencing changes...", 4)
                if self.changes_path is not None and not planned:
                    changes = ChangeSetLoader(self.changes_path).load()
                    artifact = session.plan(changes, source=str(self.changes_path))
                    warnings.extend(n["message"] for n in artifact.content.get("notices", []))
                    planned = True
                elif session.sequenced is None:
                    raise IllegalTransition(
                        "No change set to plan; pass a changes file",
                        phase=phase.value,
                    )
                if self.approve:
                    session.approve(True)
                await session.begin_execution()
            elif phase == Phase.EXECUTION:
                self._emit_progress("Applying changes...", 5)
                await session.execute(on_progress=self.on_progress and self._change_progress)
            elif phase == Phase.VALIDATION:
                self._emit_progress("Evaluating gates...", 6)
                report = await session.validate(self.scope)
                if report.failures:
                    warnings.extend(m.describe() for m in report.failures)
            elif phase == Phase.EXPLANATION:
                self._emit_progress("Writing summary...", 7)
                session.explain()
            else:
                raise IllegalTransition(
                    f"Session is in '{phase.value}'; roll back or reset before running",
                    phase=phase.value,
                )

    def _change_progress(self, message: str, current: int, total: int) -> None:
        if self.on_progress:
            self.on_progress(message, self._current_step, TOTAL_STEPS)

    def run(self) -> PipelineResult:
        """Run the pipeline synchronously."""
        return asyncio.run(self.run_async())
