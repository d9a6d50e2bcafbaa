"""File operations for pipeline state.

Provides JSON document I/O with atomic replacement, read-only archival and
the ``.refactor`` working directory layout.
"""

from __future__ import annotations

import json
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .logger import get_logger

logger = get_logger(__name__)

REFACTOR_DIR = ".refactor"


@dataclass
class FileManager:
    """Manages the pipeline's on-disk state under ``<project>/.refactor``."""

    project_path: Path
    max_file_size_mb: int = 10

    def __post_init__(self) -> None:
        self.project_path = Path(self.project_path).resolve()

    @property
    def refactor_dir(self) -> Path:
        """Root of all pipeline state for the project."""
        return self.project_path / REFACTOR_DIR

    @property
    def max_file_size_bytes(self) -> int:
        """Maximum file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    def ensure_refactor_dir(self) -> Path:
        """Ensure the .refactor directory and its subdirectories exist.

        Returns:
            Path to the .refactor directory
        """
        for sub in ("artifacts", "snapshots", "logs"):
            (self.refactor_dir / sub).mkdir(parents=True, exist_ok=True)
        return self.refactor_dir

    def read_text(self, file_path: Path) -> Optional[str]:
        """Read a text file, or None if it is missing or too large."""
        if not file_path.exists():
            return None

        file_size = file_path.stat().st_size
        if file_size > self.max_file_size_bytes:
            logger.warning(f"File too large ({file_size} bytes): {file_path}")
            return None

        return file_path.read_text(encoding="utf-8")

    def write_json(self, file_path: Path, data: Any) -> None:
        """Write JSON data atomically.

        The document is written to a sibling temp file first and then moved
        into place, so readers never observe a half-written document.

        Args:
            file_path: Path to the file
            data: Data to serialize as JSON
        """
        file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = file_path.with_name(f".{file_path.name}.tmp")
        tmp_path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True),
            encoding="utf-8",
        )
        os.replace(tmp_path, file_path)
        logger.debug(f"Wrote {file_path}")

    def read_json(self, file_path: Path) -> Optional[dict]:
        """Read and parse a JSON file.

        Args:
            file_path: Path to the JSON file

        Returns:
            Parsed JSON data or None if the file does not exist

        Raises:
            json.JSONDecodeError: If the file exists but is corrupt
        """
        content = self.read_text(file_path)
        if content is None:
            return None
        return json.loads(content)

    def archive(self, source: Path, destination: Path) -> Path:
        """Move a document into an archive location and make it read-only."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, destination)
        destination.chmod(stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
        logger.debug(f"Archived {source.name} -> {destination}")
        return destination
