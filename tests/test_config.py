"""Tests for configuration loading and change-set files."""

from __future__ import annotations

from pathlib import Path

import pytest

from refactor_pipeline.config import PipelineConfig
from refactor_pipeline.errors import InvalidChangeSet
from refactor_pipeline.models import RiskLevel
from refactor_pipeline.planning import ChangeSetLoader
from refactor_pipeline.utils.logger import get_logger, setup_logging


def test_defaults_when_no_config_file(tmp_path: Path):
    config = PipelineConfig.load(tmp_path)

    assert not config.build.enabled
    assert config.gates.min_target_passes == 4
    assert config.lint.categories["C90"] == "complexity"


def test_yaml_config_is_loaded(tmp_path: Path):
    config_file = tmp_path / ".refactor" / "pipeline.yaml"
    config_file.parent.mkdir()
    config_file.write_text(
        "build:\n"
        "  command: make\n"
        "  timeout: 30\n"
        "tests:\n"
        "  command: pytest -q {tests}\n"
        "  coverage:\n"
        "    tests/test_app.py: [src/app.py]\n"
        "gates:\n"
        "  min_target_passes: 5\n"
        "review_criteria: [Keep it simple]\n"
    )

    config = PipelineConfig.load(tmp_path)

    assert config.build.command == "make"
    assert config.build.timeout == 30.0
    assert config.tests.coverage == {"tests/test_app.py": ["src/app.py"]}
    assert config.gates.min_target_passes == 5
    assert config.review_criteria == ["Keep it simple"]


def test_environment_overrides(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("REFACTOR_PIPELINE_LOG_LEVEL", "debug")
    monkeypatch.setenv("REFACTOR_PIPELINE_APPROVAL_TIMEOUT", "12.5")

    config = PipelineConfig.load(tmp_path)

    assert config.log_level == "DEBUG"
    assert config.approval_timeout == 12.5


def test_explicit_missing_config_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        PipelineConfig.load(tmp_path, tmp_path / "missing.yaml")


def test_change_set_from_yaml(tmp_path: Path):
    path = tmp_path / "changes.yaml"
    path.write_text(
        "changes:\n"
        "  - id: extract-helper\n"
        "    title: Extract helper\n"
        "    risk: high\n"
        "    complexity: 3\n"
        "    files_affected: [src/app.py]\n"
        "    edits:\n"
        "      - {path: src/app.py, old: 'a = 1', new: 'a = 2'}\n"
    )

    [change] = ChangeSetLoader(path).load()

    assert change.id == "extract-helper"
    assert change.risk_level == RiskLevel.HIGH
    assert change.edits[0].new == "a = 2"


def test_change_set_from_json_list(tmp_path: Path):
    path = tmp_path / "changes.json"
    path.write_text('[{"id": "a"}, {"id": "b", "depends_on": ["a"]}]')

    changes = ChangeSetLoader(path).load()

    assert [c.depends_on for c in changes] == [[], ["a"]]


@pytest.mark.parametrize("text", ["changes: 5\n", "- just a string\n", "changes: [\n"])
def test_malformed_change_set_rejected(tmp_path: Path, text: str):
    path = tmp_path / "changes.yaml"
    path.write_text(text)

    with pytest.raises(InvalidChangeSet):
        ChangeSetLoader(path).load()


def test_unknown_risk_rejected(tmp_path: Path):
    path = tmp_path / "changes.json"
    path.write_text('[{"id": "a", "risk_level": "extreme"}]')

    with pytest.raises(InvalidChangeSet):
        ChangeSetLoader(path).load()


def test_logging_follows_project_log_dir(tmp_path: Path):
    first, second = tmp_path / "one" / "logs", tmp_path / "two" / "logs"

    setup_logging(first, console=False)
    get_logger("test").info("phase advanced")
    setup_logging(second, console=False)
    get_logger("test").info("gate evaluated")

    [first_log] = first.glob("pipeline_*.log")
    [second_log] = second.glob("pipeline_*.log")
    assert "phase advanced" in first_log.read_text()
    assert "gate evaluated" not in first_log.read_text()
    assert "gate evaluated" in second_log.read_text()


@pytest.mark.parametrize("record", [
    "  - id: a\n    depends_on: null\n",
    "  - id: a\n    edits:\n      - {old: x, new: y}\n",
    "  - id: a\n    edits: [null]\n",
    "  - id: a\n    complexity: lots\n",
])
def test_badly_shaped_change_record_rejected(tmp_path: Path, record: str):
    path = tmp_path / "changes.yaml"
    path.write_text("changes:\n" + record)

    with pytest.raises(InvalidChangeSet) as excinfo:
        ChangeSetLoader(path).load()

    assert excinfo.value.details["change_id"] == "a"
