"""Pre-change file snapshots for byte-exact rollback.

Snapshots are persisted under ``.refactor/snapshots/<change-id>/`` so a
rollback can be performed by a later CLI invocation than the one that
applied the change.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote

from ..errors import EditConflict
from ..utils.logger import get_logger

logger = get_logger(__name__)


def resolve_in_project(project_path: Path, relative: str) -> Path:
    """Resolve ``relative`` under the project root, refusing escapes."""
    root = project_path.resolve()
    target = (root / relative).resolve()
    try:
        target.relative_to(root)
    except ValueError as e:
        raise EditConflict(f"Path {relative!r} escapes the project root", path=relative) from e
    return target


@dataclass
class FileSnapshot:
    """Pre-change content of every file a change touches.

    ``contents`` maps a project-relative path to its bytes, or to None when
    the file did not exist before the change.
    """

    change_id: str
    contents: dict[str, Optional[bytes]] = field(default_factory=dict)

    @property
    def paths(self) -> list[str]:
        return list(self.contents)


class SnapshotStore:
    """Captures, persists and restores ``FileSnapshot`` records."""

    def __init__(self, project_path: Path, root: Path) -> None:
        self.project_path = Path(project_path).resolve()
        self.root = root

    def _dir(self, change_id: str) -> Path:
        # percent-encoding is injective; the prefix keeps "." and ".." inside root
        return self.root / f"change-{quote(change_id, safe='')}"

    def capture(self, change_id: str, paths: Iterable[str]) -> FileSnapshot:
        """Record the current bytes of ``paths`` and persist them."""
        snapshot = FileSnapshot(change_id=change_id)
        for relative in paths:
            target = resolve_in_project(self.project_path, relative)
            snapshot.contents[relative] = target.read_bytes() if target.is_file() else None

        directory = self._dir(change_id)
        if directory.exists():
            shutil.rmtree(directory)
        directory.mkdir(parents=True)

        manifest = {}
        for i, (relative, data) in enumerate(snapshot.contents.items()):
            if data is None:
                manifest[relative] = None
                continue
            blob = f"{i}.bin"
            (directory / blob).write_bytes(data)
            manifest[relative] = blob
        (directory / "manifest.json").write_text(
            json.dumps({"change_id": change_id, "files": manifest}, indent=2),
            encoding="utf-8",
        )
        logger.debug(f"Captured snapshot for {change_id}: {len(manifest)} file(s)")
        return snapshot

    def load(self, change_id: str) -> Optional[FileSnapshot]:
        directory = self._dir(change_id)
        manifest_path = directory / "manifest.json"
        if not manifest_path.exists():
            return None

        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        snapshot = FileSnapshot(change_id=change_id)
        for relative, blob in manifest["files"].items():
            snapshot.contents[relative] = (directory / blob).read_bytes() if blob else None
        return snapshot

    def restore(self, snapshot: FileSnapshot) -> list[str]:
        """Write every file back to its captured bytes.

        Files that did not exist at capture time are removed again.

        Returns:
            The restored paths
        """
        for relative, data in snapshot.contents.items():
            target = resolve_in_project(self.project_path, relative)
            if data is None:
                if target.exists():
                    target.unlink()
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        logger.info(f"Restored snapshot of {snapshot.change_id} ({len(snapshot.contents)} file(s))")
        return snapshot.paths
