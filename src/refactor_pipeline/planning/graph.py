"""Dependency graph over proposed changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from ..errors import CycleCollapsed, InvalidChangeSet
from ..models import Change, Edit, RiskLevel
from ..utils.logger import get_logger

logger = get_logger(__name__)

CYCLE_NOTE = "Cannot be split: members form a circular dependency and are applied atomically."


@dataclass
class CondensedGraph:
    """Result of collapsing every dependency cycle into one atomic change."""

    changes: list[Change]
    edges: dict[str, list[str]]
    positions: dict[str, int]
    group_of: dict[str, str]
    notices: list[CycleCollapsed] = field(default_factory=list)


class ChangeGraph:
    """Directed graph where each change points at its prerequisites."""

    def __init__(self, changes: Iterable[Change]) -> None:
        self.changes: list[Change] = list(changes)
        self.positions: dict[str, int] = {}
        for i, change in enumerate(self.changes):
            change.validate()
            if change.id in self.positions:
                raise InvalidChangeSet(f"Duplicate change id {change.id}", change_id=change.id)
            self.positions[change.id] = i

        self.by_id = {c.id: c for c in self.changes}
        self.edges: dict[str, list[str]] = {}
        for change in self.changes:
            deps: list[str] = []
            for dep in change.depends_on:
                if dep == change.id:
                    logger.warning(f"Ignoring self-dependency on {change.id}")
                    continue
                if dep not in self.by_id:
                    raise InvalidChangeSet(
                        f"Change {change.id} depends on unknown change {dep}",
                        change_id=change.id,
                        dependency=dep,
                    )
                if dep not in deps:
                    deps.append(dep)
            self.edges[change.id] = deps

    def strongly_connected_components(self) -> list[list[str]]:
        """Tarjan's algorithm; every node appears in exactly one component.

        Components are returned with members in input order.
        """
        index_counter = [0]
        stack: list[str] = []
        lowlinks: dict[str, int] = {}
        index: dict[str, int] = {}
        on_stack: dict[str, bool] = {}
        sccs: list[list[str]] = []

        def strongconnect(node: str) -> None:
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            for dep in self.edges[node]:
                if dep not in index:
                    strongconnect(dep)
                    lowlinks[node] = min(lowlinks[node], lowlinks[dep])
                elif on_stack.get(dep, False):
                    lowlinks[node] = min(lowlinks[node], index[dep])

            if lowlinks[node] == index[node]:
                scc = []
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.append(w)
                    if w == node:
                        break
                sccs.append(sorted(scc, key=self.positions.__getitem__))

        for change in self.changes:
            if change.id not in index:
                strongconnect(change.id)

        return sccs

    def condense(self) -> CondensedGraph:
        """Collapse cycles and return the acyclic condensed graph."""
        group_of: dict[str, str] = {}
        condensed: list[Change] = []
        notices: list[CycleCollapsed] = []

        for scc in self.strongly_connected_components():
            if len(scc) == 1:
                change = self.by_id[scc[0]]
                group_of[change.id] = change.id
                condensed.append(change)
                continue

            group = merge_cycle([self.by_id[m] for m in scc])
            for member in scc:
                group_of[member] = group.id
            condensed.append(group)
            notice = CycleCollapsed(
                group_id=group.id,
                members=tuple(scc),
                message=f"Merged {', '.join(scc)} into atomic change {group.id}",
            )
            notices.append(notice)
            logger.info(notice.message)

        positions = {
            c.id: min(self.positions[m] for m in (c.members or [c.id])) for c in condensed
        }
        condensed.sort(key=lambda c: positions[c.id])

        edges: dict[str, list[str]] = {}
        for change in condensed:
            deps: list[str] = []
            for member in change.members or [change.id]:
                for dep in self.edges[member]:
                    target = group_of[dep]
                    if target != change.id and target not in deps:
                        deps.append(target)
            edges[change.id] = deps

        return CondensedGraph(
            changes=condensed,
            edges=edges,
            positions=positions,
            group_of=group_of,
            notices=notices,
        )


def merge_cycle(members: list[Change]) -> Change:
    """Merge a dependency cycle into one atomic change.

    Files and edits are concatenated in input order, the risk level is the
    highest of the members and the complexity is their sum.
    """
    files: list[str] = []
    edits: list[Edit] = []
    depends_on: list[str] = []
    member_ids = [m.id for m in members]
    for member in members:
        for path in member.files_affected:
            if path not in files:
                files.append(path)
        edits.extend(member.edits)
        for dep in member.depends_on:
            if dep not in member_ids and dep not in depends_on:
                depends_on.append(dep)

    return Change(
        id="+".join(member_ids),
        title="Atomic group: " + "; ".join(m.title or m.id for m in members),
        files_affected=files,
        depends_on=depends_on,
        risk_level=max((m.risk_level for m in members), key=lambda r: r.rank, default=RiskLevel.LOW),
        complexity=sum(m.complexity for m in members),
        edits=edits,
        members=member_ids,
        note=CYCLE_NOTE,
    )
