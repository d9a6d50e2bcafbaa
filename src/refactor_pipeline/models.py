"""Shared data models for the refactoring pipeline.

This module contains dataclasses and enums that are shared across multiple
modules to avoid circular import issues.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import InvalidChangeSet


def utc_now() -> datetime:
    """Timezone-aware current time used for every pipeline timestamp."""
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    """Pipeline phases in lifecycle order, plus the two terminal states."""

    INTAKE = "intake"
    UNDERSTANDING = "understanding"
    REVIEW = "review"
    PLAN = "plan"
    EXECUTION = "execution"
    VALIDATION = "validation"
    EXPLANATION = "explanation"
    COMPLETE = "complete"
    FAILED = "failed"


class ArtifactKind(str, Enum):
    """Document kinds stored by the artifact store."""

    CONTEXT = "context"
    ANALYSIS = "analysis"
    REVIEW = "review"
    PLAN = "plan"
    EXECUTION_LOG = "execution_log"
    VALIDATION_REPORT = "validation_report"
    EXPLANATION = "explanation"


class RiskLevel(str, Enum):
    """Change risk tiers; ``rank`` gives the sort order."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class ChangeStatus(str, Enum):
    """Lifecycle of a single change during execution."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class GateVerdict(str, Enum):
    """Outcome of a gate evaluation."""

    PASSED = "passed"
    PASSED_WITH_WARNINGS = "passed_with_warnings"
    FAILED = "failed"


@dataclass
class Edit:
    """A minimal, anchored text replacement inside one file.

    ``old`` must occur exactly once in the file. An empty ``old`` against a
    missing file creates the file with ``new`` as content.
    """

    path: str
    old: str
    new: str

    def to_dict(self) -> dict:
        return {"path": self.path, "old": self.old, "new": self.new}

    @classmethod
    def from_dict(cls, data: dict) -> Edit:
        return cls(
            path=str(data["path"]),
            old=str(data.get("old", "")),
            new=str(data.get("new", "")),
        )


@dataclass
class Change:
    """A single proposed change in the refactoring plan."""

    id: str
    title: str
    files_affected: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    complexity: int = 1
    status: ChangeStatus = ChangeStatus.PENDING
    edits: list[Edit] = field(default_factory=list)
    members: list[str] = field(default_factory=list)
    note: str = ""

    @property
    def is_atomic_group(self) -> bool:
        """True when this change was produced by collapsing a cycle."""
        return len(self.members) > 1

    def touched_paths(self) -> list[str]:
        """Declared files plus any edit targets, in first-seen order."""
        paths = list(self.files_affected)
        for edit in self.edits:
            if edit.path not in paths:
                paths.append(edit.path)
        return paths

    def validate(self) -> None:
        """Check the input invariants of a proposed change."""
        if not self.id:
            raise InvalidChangeSet("Change is missing an id", change_id=self.id)
        if not 1 <= self.complexity <= 10:
            raise InvalidChangeSet(
                f"Change {self.id} complexity {self.complexity} outside [1, 10]",
                change_id=self.id,
                complexity=self.complexity,
            )
        for path in self.touched_paths():
            normalized = posixpath.normpath(path.replace("\\", "/"))
            if posixpath.isabs(normalized) or normalized == ".." or normalized.startswith("../"):
                raise InvalidChangeSet(
                    f"Change {self.id} path {path!r} is outside the project",
                    change_id=self.id,
                    path=path,
                )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "title": self.title,
            "files_affected": self.files_affected,
            "depends_on": self.depends_on,
            "risk_level": self.risk_level.value,
            "complexity": self.complexity,
            "status": self.status.value,
            "edits": [e.to_dict() for e in self.edits],
        }
        if self.members:
            data["members"] = self.members
        if self.note:
            data["note"] = self.note
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Change:
        """Create a Change from a dictionary.

        Raises:
            InvalidChangeSet: If a field has the wrong shape or value
        """
        try:
            return cls(
                id=str(data.get("id", "")),
                title=str(data.get("title", "")),
                files_affected=[str(f) for f in data.get("files_affected", [])],
                depends_on=[str(d) for d in data.get("depends_on", [])],
                risk_level=RiskLevel(str(data.get("risk_level", data.get("risk", "low"))).lower()),
                complexity=int(data.get("complexity", 1)),
                status=ChangeStatus(data.get("status", ChangeStatus.PENDING.value)),
                edits=[Edit.from_dict(e) for e in data.get("edits", [])],
                members=[str(m) for m in data.get("members", [])],
                note=str(data.get("note", "")),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidChangeSet(
                f"Invalid change record {data.get('id')!r}: {e!r}",
                change_id=data.get("id"),
            ) from e


@dataclass(frozen=True)
class Artifact:
    """An immutable, versioned document produced by one phase."""

    kind: ArtifactKind
    version: int
    created_at: datetime
    producer_phase: Phase
    content: dict[str, Any]
    source_artifact_ids: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return artifact_id(self.kind, self.version)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "producer_phase": self.producer_phase.value,
            "content": self.content,
            "source_artifact_ids": list(self.source_artifact_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Artifact:
        return cls(
            kind=ArtifactKind(data["kind"]),
            version=int(data["version"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            producer_phase=Phase(data["producer_phase"]),
            content=data.get("content", {}),
            source_artifact_ids=tuple(data.get("source_artifact_ids", [])),
        )


def artifact_id(kind: ArtifactKind, version: int) -> str:
    """Stable identifier for a given artifact version."""
    return f"{kind.value}:v{version}"


def parse_artifact_id(value: str) -> tuple[ArtifactKind, int]:
    """Split ``"<kind>:v<version>"`` into its parts.

    Raises:
        ValueError: If the id is malformed
    """
    kind, _, version = value.partition(":v")
    if not version:
        raise ValueError(f"Malformed artifact id: {value!r}")
    return ArtifactKind(kind), int(version)


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable log entry appended on every phase transition."""

    from_phase: Phase
    to_phase: Phase
    timestamp: datetime
    triggering_artifact_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "from_phase": self.from_phase.value,
            "to_phase": self.to_phase.value,
            "timestamp": self.timestamp.isoformat(),
            "triggering_artifact_id": self.triggering_artifact_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TransitionRecord:
        return cls(
            from_phase=Phase(data["from_phase"]),
            to_phase=Phase(data["to_phase"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            triggering_artifact_id=data.get("triggering_artifact_id"),
        )
