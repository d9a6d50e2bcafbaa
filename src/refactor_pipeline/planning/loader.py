"""Change set loader for reading proposed changes from disk."""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from ..errors import InvalidChangeSet
from ..models import Change
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChangeSetLoader:
    """Loads proposed change records from YAML or JSON files.

    The file holds either a list of change records or a mapping with a
    top-level ``changes`` list.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> list[Change]:
        """Parse the file into unsequenced ``Change`` records.

        Raises:
            InvalidChangeSet: If the file is missing or malformed
        """
        if not self.path.exists():
            raise InvalidChangeSet(f"Change set file not found: {self.path}", path=str(self.path))

        text = self.path.read_text(encoding="utf-8")
        try:
            if self.path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise InvalidChangeSet(f"Cannot parse {self.path}: {e}", path=str(self.path)) from e

        records = data.get("changes") if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise InvalidChangeSet(
                f"{self.path} must contain a list of changes",
                path=str(self.path),
            )

        changes = [Change.from_dict(r) for r in records if isinstance(r, dict)]
        if len(changes) != len(records):
            raise InvalidChangeSet(f"{self.path} contains non-mapping change records", path=str(self.path))

        logger.info(f"Loaded {len(changes)} change(s) from {self.path}")
        return changes
