"""Project scanning stage (intake)."""

from __future__ import annotations

from collections import Counter
from pathlib import Path

from ..config import PipelineConfig
from ..models import utc_now
from ..utils.logger import get_logger

logger = get_logger(__name__)

LANGUAGES = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
}

FRONTEND_MARKERS = ("frontend", "components", "pages", "app/")
BACKEND_MARKERS = ("backend", "api", "services", "repositories")


class ProjectScanner:
    """Builds the source manifest that becomes the context artifact."""

    def __init__(self, project_path: Path, config: PipelineConfig) -> None:
        self.project_path = Path(project_path).resolve()
        self.config = config

    def discover(self) -> list[str]:
        """Project-relative source files matching the configured globs."""
        found: set[str] = set()
        for pattern in self.config.source_globs:
            for path in self.project_path.glob(pattern):
                if not path.is_file():
                    continue
                relative = path.relative_to(self.project_path)
                if any(part in self.config.ignore for part in relative.parts):
                    continue
                found.add(relative.as_posix())
        return sorted(found)

    def scan(self) -> dict:
        """Scan the project and return the manifest content."""
        logger.info(f"Scanning {self.project_path}")
        files = self.discover()

        by_language = Counter(LANGUAGES.get(Path(f).suffix, "other") for f in files)
        layers: dict[str, list[str]] = {"frontend": [], "backend": [], "shared": []}
        for f in files:
            lowered = f.lower()
            if any(marker in lowered for marker in FRONTEND_MARKERS):
                layers["frontend"].append(f)
            elif any(marker in lowered for marker in BACKEND_MARKERS):
                layers["backend"].append(f)
            else:
                layers["shared"].append(f)

        logger.info(f"Found {len(files)} source file(s)")
        return {
            "scan_timestamp": utc_now().isoformat(),
            "project": str(self.project_path),
            "summary": {
                "total_files": len(files),
                "by_language": dict(sorted(by_language.items())),
            },
            "layers": layers,
            "files": files,
        }
