"""Change graph construction and sequencing."""

from .graph import ChangeGraph, CondensedGraph, merge_cycle
from .loader import ChangeSetLoader
from .sequencer import SequencedPlan, Sequencer, is_topological

__all__ = [
    "ChangeGraph",
    "ChangeSetLoader",
    "CondensedGraph",
    "SequencedPlan",
    "Sequencer",
    "is_topological",
    "merge_cycle",
]
