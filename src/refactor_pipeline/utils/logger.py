"""Logging for the refactoring pipeline.

Every phase invocation appends to a daily log under the project's
``.refactor/logs`` directory, next to the artifacts it produced. The
stderr sink is optional since the CLI already renders results with rich.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

logger.remove()

CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{extra[name]}</cyan> - <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[name]}:{function}:{line} - {message}"

# sink ids owned by setup_logging, and the log directory they write to
_sink_ids: list[int] = []
_log_dir: Optional[Path] = None


def _ours(record) -> bool:
    return "name" in record["extra"]


def setup_logging(
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    *,
    console: bool = True,
    file: bool = True,
) -> None:
    """Configure the pipeline's log sinks.

    Calling again with the same directory is a no-op; a different
    directory replaces the existing sinks, so one process can drive
    several projects.

    Args:
        log_dir: Directory for log files (default: ./.refactor/logs)
        level: Minimum log level
        console: Enable stderr output
        file: Enable file output
    """
    global _log_dir

    log_dir = Path(log_dir or Path(".refactor") / "logs")
    if _sink_ids and log_dir == _log_dir:
        return
    reset_logging()

    if console:
        _sink_ids.append(logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True, filter=_ours))

    if file:
        log_dir.mkdir(parents=True, exist_ok=True)
        _sink_ids.append(
            logger.add(
                log_dir / f"pipeline_{datetime.now():%Y%m%d}.log",
                format=FILE_FORMAT,
                level=level,
                rotation="10 MB",
                retention="7 days",
                compression="zip",
                filter=_ours,
            )
        )

    _log_dir = log_dir


def reset_logging() -> None:
    """Remove the sinks added by ``setup_logging``."""
    global _log_dir

    while _sink_ids:
        logger.remove(_sink_ids.pop())
    _log_dir = None


def get_logger(name: str = "refactor_pipeline"):
    """Get a logger bound to a module name."""
    return logger.bind(name=name)
