"""Tests for versioned, phase-owned artifact storage."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from refactor_pipeline.errors import InvalidArtifactReference, UnauthorizedArtifactWrite
from refactor_pipeline.models import ArtifactKind, Phase
from refactor_pipeline.store import ArtifactStore
from refactor_pipeline.utils import FileManager


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    files = FileManager(project_path=tmp_path)
    files.ensure_refactor_dir()
    return ArtifactStore(files)


def test_versions_increase_and_history_is_kept(store: ArtifactStore):
    first = store.put(ArtifactKind.CONTEXT, {"files": ["a.py"]}, Phase.INTAKE)
    second = store.put(ArtifactKind.CONTEXT, {"files": ["a.py", "b.py"]}, Phase.INTAKE)

    assert first.id == "context:v1"
    assert second.id == "context:v2"
    assert store.get(ArtifactKind.CONTEXT).content == {"files": ["a.py", "b.py"]}
    assert [a.id for a in store.history(ArtifactKind.CONTEXT)] == ["context:v1"]
    assert store.get_by_id("context:v1").content == {"files": ["a.py"]}


def test_superseded_versions_are_read_only(store: ArtifactStore, tmp_path: Path):
    store.put(ArtifactKind.CONTEXT, {}, Phase.INTAKE)
    store.put(ArtifactKind.CONTEXT, {}, Phase.INTAKE)

    archived = list((tmp_path / ".refactor" / "artifacts" / "history" / "context").iterdir())

    assert len(archived) == 1
    assert not archived[0].stat().st_mode & stat.S_IWUSR


def test_only_owning_phase_may_write(store: ArtifactStore):
    with pytest.raises(UnauthorizedArtifactWrite) as excinfo:
        store.put(ArtifactKind.PLAN, {}, Phase.EXECUTION)

    assert excinfo.value.details == {"phase": "execution", "kind": "plan"}
    assert store.get(ArtifactKind.PLAN) is None


def test_sources_must_exist(store: ArtifactStore):
    with pytest.raises(InvalidArtifactReference):
        store.put(ArtifactKind.ANALYSIS, {}, Phase.UNDERSTANDING, ["context:v7"])


def test_sources_must_come_from_earlier_phases(store: ArtifactStore):
    context = store.put(ArtifactKind.CONTEXT, {}, Phase.INTAKE)
    analysis = store.put(ArtifactKind.ANALYSIS, {}, Phase.UNDERSTANDING, [context.id])

    assert analysis.source_artifact_ids == ("context:v1",)
    with pytest.raises(InvalidArtifactReference):
        store.put(ArtifactKind.ANALYSIS, {}, Phase.UNDERSTANDING, [analysis.id])


def test_reads_only_from_earlier_phases(store: ArtifactStore):
    store.put(ArtifactKind.CONTEXT, {"files": []}, Phase.INTAKE)

    assert store.read(ArtifactKind.CONTEXT, Phase.REVIEW) is not None
    with pytest.raises(InvalidArtifactReference):
        store.read(ArtifactKind.CONTEXT, Phase.INTAKE)


def test_archive_all_keeps_version_numbering(store: ArtifactStore):
    store.put(ArtifactKind.CONTEXT, {}, Phase.INTAKE)

    assert store.archive_all() == ["context:v1"]
    assert store.get(ArtifactKind.CONTEXT) is None
    assert store.put(ArtifactKind.CONTEXT, {}, Phase.INTAKE).id == "context:v2"
