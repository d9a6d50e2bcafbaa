"""Gate evaluation against a tiered policy.

Hard metrics dominate: if any one fails the verdict is ``failed`` and the
target tier is not evaluated at all. Hard and target scores are never
averaged together. Advisory metrics are recorded but cannot change the
verdict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..models import Change, GateVerdict
from ..utils.logger import get_logger
from .policy import GatePolicy, MetricRule, Tier

logger = get_logger(__name__)


@dataclass
class GateMetric:
    """The outcome of one policy row.

    ``passed`` is None when the metric was not evaluated (target metrics
    after a hard failure, advisory metrics outside the requested scope).
    """

    name: str
    tier: Tier
    observed_value: Any
    threshold: float
    comparison: str
    passed: Optional[bool]
    affected_files: list[str] = field(default_factory=list)
    responsible_change_id: Optional[str] = None

    @property
    def delta(self) -> Optional[float]:
        if self.observed_value is None:
            return None
        return float(self.observed_value) - self.threshold

    def describe(self) -> str:
        observed = "missing" if self.observed_value is None else self.observed_value
        text = f"{self.name}: observed {observed}, required {self.comparison} {self.threshold}"
        if self.responsible_change_id:
            text += f" (likely change {self.responsible_change_id})"
        return text

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "tier": self.tier.value,
            "observed_value": self.observed_value,
            "threshold": self.threshold,
            "comparison": self.comparison,
            "passed": self.passed,
            "delta": self.delta,
            "affected_files": self.affected_files,
            "responsible_change_id": self.responsible_change_id,
        }


@dataclass
class GateReport:
    verdict: GateVerdict
    metrics: list[GateMetric]
    target_passes: int = 0
    target_total: int = 0

    @property
    def failures(self) -> list[GateMetric]:
        return [m for m in self.metrics if m.passed is False]

    @property
    def hard_failures(self) -> list[GateMetric]:
        return [m for m in self.failures if m.tier == Tier.HARD]

    def metric(self, name: str) -> Optional[GateMetric]:
        for m in self.metrics:
            if m.name == name:
                return m
        return None

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict.value,
            "target_passes": self.target_passes,
            "target_total": self.target_total,
            "metrics": [m.to_dict() for m in self.metrics],
            "failures": [m.to_dict() for m in self.failures],
        }


class GateEvaluator:
    """Scores observed metric values against a ``GatePolicy``."""

    def __init__(self, policy: Optional[GatePolicy] = None) -> None:
        self.policy = policy or GatePolicy()

    def evaluate(
        self,
        observations: Mapping[str, Any],
        *,
        affected_files: Optional[Mapping[str, Iterable[str]]] = None,
        changes: Optional[Sequence[Change]] = None,
        include_advisory: bool = True,
    ) -> GateReport:
        """Evaluate ``observations`` and return the verdict with every metric.

        Args:
            observations: Metric name to observed value
            affected_files: Metric name to the files its failures point at
            changes: Applied changes in application order, used to name the
                change most plausibly responsible for each failure
            include_advisory: Evaluate the advisory tier

        Returns:
            GateReport with verdict and per-metric results
        """
        affected_files = affected_files or {}
        changes = list(changes or [])
        metrics: list[GateMetric] = []

        def score(rule: MetricRule) -> GateMetric:
            observed = observations.get(rule.name)
            if isinstance(observed, bool):
                observed = int(observed)
            metric = GateMetric(
                name=rule.name,
                tier=rule.tier,
                observed_value=observed,
                threshold=rule.threshold,
                comparison=rule.comparison,
                passed=rule.check(observed),
                affected_files=sorted(set(affected_files.get(rule.name, ()))),
            )
            if not metric.passed:
                metric.responsible_change_id = responsible_change(metric.affected_files, changes)
            return metric

        def skipped(rule: MetricRule) -> GateMetric:
            return GateMetric(
                name=rule.name,
                tier=rule.tier,
                observed_value=observations.get(rule.name),
                threshold=rule.threshold,
                comparison=rule.comparison,
                passed=None,
            )

        hard = [score(rule) for rule in self.policy.hard]
        metrics.extend(hard)

        if not all(m.passed for m in hard):
            metrics.extend(skipped(rule) for rule in self.policy.target)
            verdict = GateVerdict.FAILED
            target_passes = 0
        else:
            target = [score(rule) for rule in self.policy.target]
            metrics.extend(target)
            target_passes = sum(1 for m in target if m.passed)
            if target_passes >= self.policy.min_target_passes:
                verdict = GateVerdict.PASSED
            elif target_passes >= self.policy.min_warning_passes:
                verdict = GateVerdict.PASSED_WITH_WARNINGS
            else:
                verdict = GateVerdict.FAILED

        if include_advisory:
            metrics.extend(score(rule) for rule in self.policy.advisory)
        else:
            metrics.extend(skipped(rule) for rule in self.policy.advisory)

        report = GateReport(
            verdict=verdict,
            metrics=metrics,
            target_passes=target_passes,
            target_total=len(self.policy.target),
        )
        logger.info(
            f"Gate verdict: {verdict.value} "
            f"(target {target_passes}/{len(self.policy.target)}, "
            f"{len(report.failures)} failing metric(s))"
        )
        for failure in report.failures:
            logger.warning(f"Gate metric failed: {failure.describe()}")
        return report


def responsible_change(files: Iterable[str], changes: Sequence[Change]) -> Optional[str]:
    """The change sharing the most files with ``files``.

    Ties go to the change applied latest, since it is the most recent edit
    to the shared files.
    """
    wanted = set(files)
    if not wanted:
        return None

    best_id: Optional[str] = None
    best_overlap = 0
    for change in changes:
        overlap = len(wanted.intersection(change.touched_paths()))
        if overlap and overlap >= best_overlap:
            best_id, best_overlap = change.id, overlap
    return best_id
