"""Phase state machine for the refactoring pipeline.

Phases only move forward, one step at a time. Two transitions are gated:

- ``plan -> execution`` needs an approval recorded against the exact plan
  artifact version being executed.
- ``validation -> explanation`` needs a non-failed gate verdict; a failed
  verdict moves the machine to ``failed`` instead.

The only backwards moves are ``rollback_return`` (to ``execution``) and
``reset`` (to ``intake``). Any other attempt raises ``IllegalTransition``
and leaves the machine untouched.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..errors import ApprovalDenied, IllegalTransition
from ..models import (
    ArtifactKind,
    GateVerdict,
    Phase,
    TransitionRecord,
    utc_now,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

FORWARD_ORDER: tuple[Phase, ...] = (
    Phase.INTAKE,
    Phase.UNDERSTANDING,
    Phase.REVIEW,
    Phase.PLAN,
    Phase.EXECUTION,
    Phase.VALIDATION,
    Phase.EXPLANATION,
    Phase.COMPLETE,
)

PHASE_INDEX = {phase: i for i, phase in enumerate(FORWARD_ORDER)}

# Which phase is allowed to produce each artifact kind.
PRODUCER_PHASE: dict[ArtifactKind, Phase] = {
    ArtifactKind.CONTEXT: Phase.INTAKE,
    ArtifactKind.ANALYSIS: Phase.UNDERSTANDING,
    ArtifactKind.REVIEW: Phase.REVIEW,
    ArtifactKind.PLAN: Phase.PLAN,
    ArtifactKind.EXECUTION_LOG: Phase.EXECUTION,
    ArtifactKind.VALIDATION_REPORT: Phase.VALIDATION,
    ArtifactKind.EXPLANATION: Phase.EXPLANATION,
}

ROLLBACK_SOURCES = (Phase.EXECUTION, Phase.VALIDATION, Phase.FAILED)


def phase_precedes(earlier: Phase, later: Phase) -> bool:
    """True if ``earlier`` comes strictly before ``later`` in the lifecycle."""
    if earlier not in PHASE_INDEX or later not in PHASE_INDEX:
        return False
    return PHASE_INDEX[earlier] < PHASE_INDEX[later]


def can_write(phase: Phase, kind: ArtifactKind) -> bool:
    """A phase writes exactly the one artifact kind it produces."""
    return PRODUCER_PHASE[kind] == phase


def can_read(phase: Phase, kind: ArtifactKind) -> bool:
    """A phase reads only artifacts produced by earlier phases."""
    return phase_precedes(PRODUCER_PHASE[kind], phase)


class PhaseStateMachine:
    """Enforces the phase lifecycle and records every transition."""

    def __init__(
        self,
        phase: Phase = Phase.INTAKE,
        *,
        log: Optional[Iterable[TransitionRecord]] = None,
        approvals: Optional[dict[str, bool]] = None,
        verdict: Optional[GateVerdict] = None,
    ) -> None:
        self._phase = phase
        self._log: list[TransitionRecord] = list(log or [])
        self._approvals: dict[str, bool] = dict(approvals or {})
        self._verdict = verdict

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def log(self) -> tuple[TransitionRecord, ...]:
        return tuple(self._log)

    @property
    def verdict(self) -> Optional[GateVerdict]:
        return self._verdict

    def require(self, *phases: Phase, operation: str = "") -> None:
        """Raise ``IllegalTransition`` unless the machine is in one of ``phases``."""
        if self._phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise IllegalTransition(
                f"Cannot {operation or 'proceed'} in phase '{self._phase.value}' "
                f"(allowed: {allowed})",
                phase=self._phase.value,
                operation=operation,
                allowed=[p.value for p in phases],
            )

    def next_phase(self) -> Optional[Phase]:
        """The phase a forward transition would enter, if any."""
        if self._phase not in PHASE_INDEX:
            return None
        index = PHASE_INDEX[self._phase]
        if index + 1 >= len(FORWARD_ORDER):
            return None
        return FORWARD_ORDER[index + 1]

    def can_write(self, kind: ArtifactKind) -> bool:
        return can_write(self._phase, kind)

    def can_read(self, kind: ArtifactKind) -> bool:
        return can_read(self._phase, kind)

    # -- gate signals -----------------------------------------------------

    def record_approval(self, plan_artifact_id: str, approved: bool) -> None:
        """Record the human decision for one plan artifact version."""
        self.require(Phase.PLAN, operation="record approval")
        self._approvals[plan_artifact_id] = bool(approved)
        logger.info(f"Approval for {plan_artifact_id}: {'granted' if approved else 'denied'}")

    def is_approved(self, plan_artifact_id: str) -> bool:
        return self._approvals.get(plan_artifact_id, False)

    def record_verdict(self, verdict: GateVerdict) -> None:
        self.require(Phase.VALIDATION, operation="record gate verdict")
        self._verdict = verdict

    # -- transitions ------------------------------------------------------

    def advance(self, triggering_artifact_id: Optional[str] = None) -> TransitionRecord:
        """Move one phase forward, honouring the approval and gate checks.

        Args:
            triggering_artifact_id: Artifact whose completion drives the move.
                For ``plan -> execution`` this must be the plan artifact id.

        Returns:
            The appended transition record

        Raises:
            IllegalTransition: If no forward move is legal from here
            ApprovalDenied: If the plan version lacks a granted approval
        """
        target = self.next_phase()
        if target is None:
            raise IllegalTransition(
                f"No forward transition from phase '{self._phase.value}'",
                phase=self._phase.value,
            )

        if self._phase == Phase.PLAN:
            if not triggering_artifact_id:
                raise IllegalTransition(
                    "Plan -> execution requires the plan artifact id",
                    phase=self._phase.value,
                )
            if not self.is_approved(triggering_artifact_id):
                raise ApprovalDenied(
                    f"Plan {triggering_artifact_id} has no granted approval",
                    phase=self._phase.value,
                    artifact_id=triggering_artifact_id,
                )

        if self._phase == Phase.VALIDATION:
            if self._verdict is None:
                raise IllegalTransition(
                    "Validation has not produced a gate verdict yet",
                    phase=self._phase.value,
                )
            if self._verdict == GateVerdict.FAILED:
                target = Phase.FAILED

        return self._move(target, triggering_artifact_id)

    def rollback_return(self, triggering_artifact_id: Optional[str] = None) -> TransitionRecord:
        """Return to ``execution`` after a rollback."""
        self.require(*ROLLBACK_SOURCES, operation="rollback")
        self._verdict = None
        return self._move(Phase.EXECUTION, triggering_artifact_id)

    def reset(self) -> TransitionRecord:
        """Return to ``intake`` and forget approvals and verdicts."""
        self._approvals.clear()
        self._verdict = None
        return self._move(Phase.INTAKE, None)

    def _move(self, target: Phase, triggering_artifact_id: Optional[str]) -> TransitionRecord:
        record = TransitionRecord(
            from_phase=self._phase,
            to_phase=target,
            timestamp=utc_now(),
            triggering_artifact_id=triggering_artifact_id,
        )
        self._log.append(record)
        logger.info(f"Phase {record.from_phase.value} -> {record.to_phase.value}")
        self._phase = target
        return record

    # -- persistence ------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "phase": self._phase.value,
            "log": [r.to_dict() for r in self._log],
            "approvals": dict(self._approvals),
            "verdict": self._verdict.value if self._verdict else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PhaseStateMachine:
        verdict = data.get("verdict")
        return cls(
            Phase(data.get("phase", Phase.INTAKE.value)),
            log=[TransitionRecord.from_dict(r) for r in data.get("log", [])],
            approvals={str(k): bool(v) for k, v in data.get("approvals", {}).items()},
            verdict=GateVerdict(verdict) if verdict else None,
        )
