"""Tests for change graph condensation and deterministic sequencing."""

from __future__ import annotations

import random

import pytest

from conftest import make_change
from refactor_pipeline.errors import InvalidChangeSet
from refactor_pipeline.models import Edit, RiskLevel
from refactor_pipeline.planning import ChangeGraph, SequencedPlan, Sequencer, is_topological
from refactor_pipeline.planning.graph import CYCLE_NOTE


def test_dependent_change_runs_after_independent_peers():
    plan = Sequencer().sequence([
        make_change("A"),
        make_change("B", depends_on=("A",)),
        make_change("C"),
    ])

    assert plan.order == ["A", "C", "B"]
    assert plan.prerequisites == {"A": [], "C": [], "B": ["A"]}
    assert is_topological(plan)


def test_lower_risk_first_among_independent_changes():
    plan = Sequencer().sequence([
        make_change("X", risk="critical"),
        make_change("Y", risk="medium"),
        make_change("Z", risk="low"),
    ])

    assert plan.order == ["Z", "Y", "X"]


def test_risk_outranks_dependency_depth():
    plan = Sequencer().sequence([
        make_change("A"),
        make_change("B", risk="critical"),
        make_change("C", depends_on=("A",)),
    ])

    assert plan.order == ["A", "C", "B"]


def test_equal_risk_keeps_input_order():
    plan = Sequencer().sequence([make_change("b"), make_change("a"), make_change("c")])

    assert plan.order == ["b", "a", "c"]


def test_cycle_collapses_into_atomic_group():
    a = make_change("A", depends_on=("B",), risk="low", complexity=4,
                    edits=(Edit("src/a.py", "x", "y"),))
    b = make_change("B", depends_on=("A",), risk="high", complexity=8,
                    edits=(Edit("src/b.py", "x", "y"),))
    c = make_change("C", depends_on=("A",))

    plan = Sequencer().sequence([a, b, c])

    assert plan.order == ["A+B", "C"]
    group = plan.get("A+B")
    assert group.members == ["A", "B"]
    assert group.is_atomic_group
    assert group.risk_level == RiskLevel.HIGH
    assert group.complexity == 12
    assert group.files_affected == ["src/a.py", "src/b.py"]
    assert [e.path for e in group.edits] == ["src/a.py", "src/b.py"]
    assert group.note == CYCLE_NOTE
    assert plan.prerequisites["C"] == ["A+B"]

    assert len(plan.notices) == 1
    assert plan.notices[0].group_id == "A+B"
    assert plan.notices[0].members == ("A", "B")


def test_three_member_cycle_found_by_scc():
    graph = ChangeGraph([
        make_change("A", depends_on=("C",)),
        make_change("B", depends_on=("A",)),
        make_change("C", depends_on=("B",)),
        make_change("D"),
    ])

    components = graph.strongly_connected_components()

    assert sorted(len(c) for c in components) == [1, 3]
    assert ["A", "B", "C"] in components


def test_self_dependency_is_dropped():
    plan = Sequencer().sequence([make_change("A", depends_on=("A",))])

    assert plan.order == ["A"]
    assert plan.prerequisites["A"] == []
    assert plan.notices == []


def test_unknown_dependency_rejected():
    with pytest.raises(InvalidChangeSet) as excinfo:
        Sequencer().sequence([make_change("A", depends_on=("missing",))])

    assert excinfo.value.details["dependency"] == "missing"


def test_duplicate_id_rejected():
    with pytest.raises(InvalidChangeSet):
        Sequencer().sequence([make_change("A"), make_change("A")])


@pytest.mark.parametrize("complexity", [0, 11])
def test_complexity_out_of_range_rejected(complexity):
    with pytest.raises(InvalidChangeSet):
        Sequencer().sequence([make_change("A", complexity=complexity)])


def test_identical_input_gives_identical_plan():
    def changes():
        return [
            make_change("api", risk="high"),
            make_change("db", risk="medium", depends_on=("api",)),
            make_change("ui", risk="low", depends_on=("api",)),
            make_change("docs"),
        ]

    first = Sequencer().sequence(changes())
    second = Sequencer().sequence(changes())

    assert first.to_dict() == second.to_dict()
    assert first.order == ["docs", "api", "ui", "db"]


def test_plan_survives_serialization():
    plan = Sequencer().sequence([
        make_change("A", depends_on=("B",)),
        make_change("B", depends_on=("A",)),
    ])

    restored = SequencedPlan.from_dict(plan.to_dict())

    assert restored.order == plan.order
    assert restored.notices == plan.notices
    assert restored.get("A+B").members == ["A", "B"]


def test_cycle_with_prerequisites_on_both_sides():
    plan = Sequencer().sequence([
        make_change("Y", depends_on=("B",)),
        make_change("A", depends_on=("X", "B")),
        make_change("B", depends_on=("A",)),
        make_change("X"),
    ])

    assert plan.order == ["X", "A+B", "Y"]
    assert plan.prerequisites == {"X": [], "A+B": ["X"], "Y": ["A+B"]}
    assert is_topological(plan)


@pytest.mark.parametrize("path", ["../outside.py", "/etc/passwd", "src/../../x.py"])
def test_path_outside_project_rejected(path):
    with pytest.raises(InvalidChangeSet) as excinfo:
        Sequencer().sequence([make_change("A", files=(path,))])

    assert excinfo.value.details["path"] == path


def random_change_set(seed: int) -> list:
    rng = random.Random(seed)
    size = rng.randint(1, 12)
    risks = [r.value for r in RiskLevel]
    ids = [f"c{i}" for i in range(size)]
    records = []
    for i, change_id in enumerate(ids):
        # dependencies only on earlier ids keep the graph acyclic
        deps = tuple(rng.sample(ids[:i], rng.randint(0, min(i, 3))))
        records.append(make_change(change_id, depends_on=deps, risk=rng.choice(risks)))
    rng.shuffle(records)
    return records


@pytest.mark.parametrize("seed", range(25))
def test_random_dag_ordering_properties(seed):
    changes = random_change_set(seed)
    plan = Sequencer().sequence(changes)

    assert sorted(plan.order) == sorted(c.id for c in changes)
    assert is_topological(plan)
    assert Sequencer().sequence(random_change_set(seed)).order == plan.order

    rank = {c.id: c.risk_level.rank for c in plan.changes}
    placed: set[str] = set()
    for change_id in plan.order:
        ready = [
            cid for cid in plan.order
            if cid not in placed and set(plan.prerequisites[cid]) <= placed
        ]
        assert rank[change_id] == min(rank[cid] for cid in ready)
        placed.add(change_id)
