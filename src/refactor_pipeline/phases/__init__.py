"""Phase lifecycle enforcement."""

from .machine import (
    FORWARD_ORDER,
    PRODUCER_PHASE,
    PhaseStateMachine,
    can_read,
    can_write,
    phase_precedes,
)

__all__ = [
    "FORWARD_ORDER",
    "PRODUCER_PHASE",
    "PhaseStateMachine",
    "can_read",
    "can_write",
    "phase_precedes",
]
