"""Deterministic execution ordering for a change set."""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..errors import CycleCollapsed, InvalidChangeSet
from ..models import Change
from ..utils.logger import get_logger
from .graph import ChangeGraph

logger = get_logger(__name__)


@dataclass
class SequencedPlan:
    """Totally ordered change list with resolved prerequisites."""

    changes: list[Change]
    prerequisites: dict[str, list[str]]
    notices: list[CycleCollapsed] = field(default_factory=list)

    @property
    def order(self) -> list[str]:
        return [c.id for c in self.changes]

    def get(self, change_id: str) -> Optional[Change]:
        for change in self.changes:
            if change.id == change_id:
                return change
        return None

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "changes": [c.to_dict() for c in self.changes],
            "prerequisites": self.prerequisites,
            "notices": [n.to_dict() for n in self.notices],
        }

    @classmethod
    def from_dict(cls, data: dict) -> SequencedPlan:
        notices = [
            CycleCollapsed(
                group_id=n["group_id"],
                members=tuple(n.get("members", [])),
                message=n.get("message", ""),
            )
            for n in data.get("notices", [])
        ]
        return cls(
            changes=[Change.from_dict(c) for c in data.get("changes", [])],
            prerequisites={k: list(v) for k, v in data.get("prerequisites", {}).items()},
            notices=notices,
        )


class Sequencer:
    """Orders changes so every prerequisite runs first.

    Kahn's algorithm over a priority queue keyed on risk, then dependency
    depth, then input position. The lowest-risk ready change always goes
    next; at equal risk, changes nearer the roots of the graph go first and
    then input order decides, so identical input yields identical output.
    """

    def sequence(self, changes: Iterable[Change]) -> SequencedPlan:
        """Build the execution order for ``changes``.

        Raises:
            InvalidChangeSet: On duplicate ids, unknown dependencies or
                out-of-range complexity
        """
        graph = ChangeGraph(changes)
        condensed = graph.condense()
        by_id = {c.id: c for c in condensed.changes}

        depth: dict[str, int] = {}

        def sort_key(change_id: str) -> tuple[int, int, int, str]:
            deps = condensed.edges[change_id]
            depth[change_id] = 1 + max(depth[d] for d in deps) if deps else 0
            return (
                by_id[change_id].risk_level.rank,
                depth[change_id],
                condensed.positions[change_id],
                change_id,
            )

        waiting = {cid: len(deps) for cid, deps in condensed.edges.items()}
        dependents: dict[str, list[str]] = {cid: [] for cid in condensed.edges}
        for cid, deps in condensed.edges.items():
            for dep in deps:
                dependents[dep].append(cid)

        ready = [sort_key(cid) for cid, count in waiting.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[Change] = []
        while ready:
            *_, change_id = heapq.heappop(ready)
            ordered.append(by_id[change_id])
            for dependent in dependents[change_id]:
                waiting[dependent] -= 1
                if waiting[dependent] == 0:
                    heapq.heappush(ready, sort_key(dependent))

        if len(ordered) != len(by_id):
            # Condensation removes cycles, so this only guards bugs.
            placed = {c.id for c in ordered}
            raise InvalidChangeSet(
                "Unresolvable dependencies after cycle collapse",
                changes=sorted(set(by_id) - placed),
            )

        position = {c.id: i for i, c in enumerate(ordered)}
        prerequisites = {
            cid: sorted(deps, key=position.__getitem__) for cid, deps in condensed.edges.items()
        }

        logger.info(f"Sequenced {len(ordered)} change(s): {' -> '.join(position)}")
        return SequencedPlan(
            changes=ordered,
            prerequisites={c.id: prerequisites[c.id] for c in ordered},
            notices=condensed.notices,
        )


def is_topological(plan: SequencedPlan) -> bool:
    """True if every change appears after all of its prerequisites."""
    position = {cid: i for i, cid in enumerate(plan.order)}
    return all(
        position[dep] < position[cid]
        for cid, deps in plan.prerequisites.items()
        for dep in deps
    )
