"""Versioned artifact store.

Layout under ``<project>/.refactor/artifacts``::

    <kind>/current.json                      latest version of each kind
    history/<kind>/<timestamp>-v<N>.json     superseded versions, read-only

Writing a kind that already has a current version first moves the old
document into the history partition. Nothing is ever deleted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

from ..errors import InvalidArtifactReference, UnauthorizedArtifactWrite
from ..models import Artifact, ArtifactKind, Phase, parse_artifact_id, utc_now
from ..phases.machine import PRODUCER_PHASE, can_read, can_write, phase_precedes
from ..utils.file_ops import FileManager
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ArtifactStore:
    """Typed, versioned document repository with an archival history."""

    def __init__(self, file_manager: FileManager) -> None:
        self.files = file_manager
        self.root = file_manager.refactor_dir / "artifacts"

    def _current_path(self, kind: ArtifactKind) -> Path:
        return self.root / kind.value / "current.json"

    def _history_dir(self, kind: ArtifactKind) -> Path:
        return self.root / "history" / kind.value

    def get(self, kind: ArtifactKind) -> Optional[Artifact]:
        """Return the current version of ``kind`` or None."""
        data = self.files.read_json(self._current_path(kind))
        return Artifact.from_dict(data) if data else None

    def read(self, kind: ArtifactKind, reader_phase: Phase) -> Optional[Artifact]:
        """Return the current ``kind`` for a reader, enforcing phase order.

        Raises:
            InvalidArtifactReference: If ``reader_phase`` does not come after
                the phase that produces ``kind``
        """
        if not can_read(reader_phase, kind):
            raise InvalidArtifactReference(
                f"Phase '{reader_phase.value}' may not read '{kind.value}' artifacts",
                phase=reader_phase.value,
                kind=kind.value,
            )
        return self.get(kind)

    def history(self, kind: ArtifactKind) -> list[Artifact]:
        """Superseded versions of ``kind``, oldest first."""
        directory = self._history_dir(kind)
        if not directory.exists():
            return []
        artifacts = [
            Artifact.from_dict(self.files.read_json(path) or {})
            for path in directory.glob("*.json")
        ]
        return sorted(artifacts, key=lambda a: (a.version, a.created_at))

    def get_by_id(self, artifact_id: str) -> Optional[Artifact]:
        """Find an artifact by id in the current slot or the history."""
        try:
            kind, version = parse_artifact_id(artifact_id)
        except ValueError:
            return None

        current = self.get(kind)
        if current and current.version == version:
            return current
        for artifact in self.history(kind):
            if artifact.version == version:
                return artifact
        return None

    def put(
        self,
        kind: ArtifactKind,
        content: dict[str, Any],
        producer_phase: Phase,
        source_ids: Iterable[str] = (),
    ) -> Artifact:
        """Create the next version of ``kind``.

        Args:
            kind: Artifact kind to write
            content: JSON-serialisable document body
            producer_phase: Phase writing the artifact
            source_ids: Ids of artifacts this one was derived from

        Returns:
            The stored artifact

        Raises:
            UnauthorizedArtifactWrite: If ``producer_phase`` does not own ``kind``
            InvalidArtifactReference: If a source id is unknown or not produced
                by an earlier phase
        """
        if not can_write(producer_phase, kind):
            raise UnauthorizedArtifactWrite(
                f"Phase '{producer_phase.value}' cannot produce '{kind.value}' "
                f"(owner: '{PRODUCER_PHASE[kind].value}')",
                phase=producer_phase.value,
                kind=kind.value,
            )

        sources = tuple(source_ids)
        for source_id in sources:
            self._check_source(source_id, producer_phase)

        previous = self.get(kind)
        # Versions keep counting across resets, so ids stay unique.
        version = max([a.version for a in self.history(kind)] + [previous.version if previous else 0]) + 1
        if previous is not None:
            self._supersede(previous)

        artifact = Artifact(
            kind=kind,
            version=version,
            created_at=utc_now(),
            producer_phase=producer_phase,
            content=content,
            source_artifact_ids=sources,
        )
        self.files.write_json(self._current_path(kind), artifact.to_dict())
        logger.info(f"Stored artifact {artifact.id}")
        return artifact

    def archive_all(self) -> list[str]:
        """Move every current artifact into history; returns archived ids."""
        archived = []
        for kind in ArtifactKind:
            current = self.get(kind)
            if current is not None:
                self._supersede(current)
                archived.append(current.id)
        return archived

    def _check_source(self, source_id: str, producer_phase: Phase) -> None:
        source = self.get_by_id(source_id)
        if source is None:
            raise InvalidArtifactReference(
                f"Unknown source artifact {source_id}",
                artifact_id=source_id,
            )
        if not phase_precedes(source.producer_phase, producer_phase):
            raise InvalidArtifactReference(
                f"Artifact {source_id} from '{source.producer_phase.value}' cannot "
                f"be a source for phase '{producer_phase.value}'",
                artifact_id=source_id,
                phase=producer_phase.value,
            )

    def _supersede(self, artifact: Artifact) -> None:
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        destination = self._history_dir(artifact.kind) / f"{stamp}-v{artifact.version}.json"
        self.files.archive(self._current_path(artifact.kind), destination)
        logger.debug(f"Superseded {artifact.id}")
