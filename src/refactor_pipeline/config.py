"""Pipeline configuration.

Settings live in ``<project>/.refactor/pipeline.yaml``. A handful of
values can be overridden from the environment (``.env`` is loaded by the
entry points before this module reads ``os.environ``).

Example::

    build:
      command: python -m compileall -q src
      timeout: 300
    tests:
      command: pytest -q {tests}
      timeout: 600
      coverage:
        tests/test_parser.py: ["src/app/parser.py"]
    lint:
      command: ruff check --output-format json --exit-zero {files}
      categories: {S: unsafe, D: documentation, C90: complexity, ASYNC: concurrency}
    gates:
      min_target_passes: 4
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .gates.policy import GatePolicy
from .utils.file_ops import REFACTOR_DIR
from .utils.logger import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = "pipeline.yaml"

DEFAULT_SOURCE_GLOBS = ["**/*.py", "**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx"]
DEFAULT_IGNORE = [
    "node_modules", ".git", "__pycache__", ".venv", "venv", "dist", "build", REFACTOR_DIR,
]
DEFAULT_LINT_CATEGORIES = {
    "S": "unsafe",
    "D": "documentation",
    "C90": "complexity",
    "ASYNC": "concurrency",
    "E": "style",
    "W": "style",
    "N": "style",
}
DEFAULT_REVIEW_CRITERIA = [
    "No compiler errors or new warnings",
    "No concurrency diagnostics",
    "Previously passing tests keep passing",
    "Unsafe operations reduced",
    "Public API documented",
    "Style guide followed",
    "Functions kept below complexity 10",
    "Test coverage does not regress",
]


@dataclass
class CommandConfig:
    """A shell command with its timeout in seconds."""

    command: str = ""
    timeout: float = 300.0

    @property
    def enabled(self) -> bool:
        return bool(self.command.strip())


@dataclass
class TestCommandConfig(CommandConfig):
    __test__ = False

    timeout: float = 600.0
    # test path -> glob patterns of the source files it covers
    coverage: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class LintCommandConfig(CommandConfig):
    timeout: float = 120.0
    categories: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LINT_CATEGORIES))
    error_rules: list[str] = field(default_factory=list)


@dataclass
class PipelineConfig:
    """All settings for one project."""

    build: CommandConfig = field(default_factory=CommandConfig)
    tests: TestCommandConfig = field(default_factory=TestCommandConfig)
    lint: LintCommandConfig = field(default_factory=LintCommandConfig)
    approval_timeout: float = 600.0
    source_globs: list[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_GLOBS))
    ignore: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))
    gates: GatePolicy = field(default_factory=GatePolicy)
    review_criteria: list[str] = field(default_factory=lambda: list(DEFAULT_REVIEW_CRITERIA))
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> PipelineConfig:
        data = data or {}
        build = data.get("build") or {}
        tests = data.get("tests") or {}
        lint = data.get("lint") or {}

        config = cls(
            build=CommandConfig(
                command=str(build.get("command", "")),
                timeout=float(build.get("timeout", 300.0)),
            ),
            tests=TestCommandConfig(
                command=str(tests.get("command", "")),
                timeout=float(tests.get("timeout", 600.0)),
                coverage={str(k): [str(p) for p in v] for k, v in (tests.get("coverage") or {}).items()},
            ),
            lint=LintCommandConfig(
                command=str(lint.get("command", "")),
                timeout=float(lint.get("timeout", 120.0)),
                categories=dict(lint.get("categories") or DEFAULT_LINT_CATEGORIES),
                error_rules=[str(r) for r in lint.get("error_rules", [])],
            ),
            approval_timeout=float(data.get("approval_timeout", 600.0)),
            source_globs=list(data.get("source_globs") or DEFAULT_SOURCE_GLOBS),
            ignore=list(data.get("ignore") or DEFAULT_IGNORE),
            gates=GatePolicy.from_dict(data.get("gates")),
            review_criteria=list(data.get("review_criteria") or DEFAULT_REVIEW_CRITERIA),
            log_level=str(data.get("log_level", "INFO")).upper(),
        )
        return config.apply_env()

    def apply_env(self) -> PipelineConfig:
        """Apply ``REFACTOR_PIPELINE_*`` environment overrides in place."""
        level = os.environ.get("REFACTOR_PIPELINE_LOG_LEVEL")
        if level:
            self.log_level = level.upper()
        timeout = os.environ.get("REFACTOR_PIPELINE_APPROVAL_TIMEOUT")
        if timeout:
            self.approval_timeout = float(timeout)
        return self

    @classmethod
    def load(cls, project_path: Path, config_path: Optional[Path] = None) -> PipelineConfig:
        """Load settings for a project.

        Args:
            project_path: Project root
            config_path: Explicit config file; defaults to
                ``<project>/.refactor/pipeline.yaml``

        Returns:
            The parsed configuration, or defaults when no file exists
        """
        path = config_path or Path(project_path) / REFACTOR_DIR / CONFIG_FILENAME
        if not path.exists():
            if config_path is not None:
                raise FileNotFoundError(f"Config file not found: {path}")
            logger.debug(f"No config at {path}, using defaults")
            return cls().apply_env()

        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")
        logger.debug(f"Loaded config from {path}")
        return cls.from_dict(data)
