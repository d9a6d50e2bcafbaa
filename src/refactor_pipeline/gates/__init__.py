"""Quality gates."""

from .evaluator import GateEvaluator, GateMetric, GateReport, responsible_change
from .metrics import Baseline, Observations, collect_observations
from .policy import GatePolicy, MetricRule, Tier

__all__ = [
    "Baseline",
    "GateEvaluator",
    "GateMetric",
    "GatePolicy",
    "GateReport",
    "MetricRule",
    "Observations",
    "Tier",
    "collect_observations",
    "responsible_change",
]
