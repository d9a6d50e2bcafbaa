"""Gate policy: which metrics are checked, at which tier, against what."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Tier(str, Enum):
    HARD = "hard"
    TARGET = "target"
    ADVISORY = "advisory"


COMPARISONS = (">=", "<=", "==")


@dataclass(frozen=True)
class MetricRule:
    """One row of the policy table."""

    name: str
    tier: Tier
    threshold: float
    comparison: str = ">="
    description: str = ""

    def __post_init__(self) -> None:
        if self.comparison not in COMPARISONS:
            raise ValueError(f"Unsupported comparison {self.comparison!r} for metric {self.name}")

    def check(self, observed: Any) -> bool:
        """Compare an observed value against the threshold.

        Booleans compare as 0/1. A missing value never passes.
        """
        if observed is None:
            return False
        value = float(observed)
        if self.comparison == ">=":
            return value >= self.threshold
        if self.comparison == "<=":
            return value <= self.threshold
        return value == self.threshold

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "tier": self.tier.value,
            "threshold": self.threshold,
            "comparison": self.comparison,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict, tier: Optional[Tier] = None) -> MetricRule:
        return cls(
            name=str(data["name"]),
            tier=tier or Tier(data.get("tier", Tier.TARGET.value)),
            threshold=float(data["threshold"]),
            comparison=str(data.get("comparison", ">=")),
            description=str(data.get("description", "")),
        )


def _rules(tier: Tier, rows: list[tuple[str, str, float, str]]) -> tuple[MetricRule, ...]:
    return tuple(MetricRule(name, tier, threshold, op, desc) for name, op, threshold, desc in rows)


DEFAULT_HARD = _rules(Tier.HARD, [
    ("compiler_errors", "<=", 0, "Zero compiler errors"),
    ("new_warnings", "<=", 0, "Zero new compiler warnings"),
    ("race_diagnostics", "<=", 0, "Zero concurrency / data-race diagnostics"),
    ("prior_tests_passing_pct", ">=", 100, "All previously passing tests still pass"),
    ("behavior_preserved", "==", 1, "Behavior preservation signal is true"),
])

DEFAULT_TARGET = _rules(Tier.TARGET, [
    ("unsafe_reduction_pct", ">=", 80, "Unsafe operations reduced by at least 80%"),
    ("doc_coverage_pct", "==", 100, "Public API fully documented"),
    ("style_compliance_pct", ">=", 85, "Style compliance at least 85%"),
    ("avg_complexity", "<=", 9.99, "Average complexity below 10"),
    ("coverage_delta", ">=", 0, "Test coverage does not regress"),
])

DEFAULT_ADVISORY = _rules(Tier.ADVISORY, [
    ("lint_findings", "<=", 0, "No remaining lint findings"),
    ("max_complexity", "<=", 15, "No function above complexity 15"),
])


@dataclass(frozen=True)
class GatePolicy:
    """Tiered metric table plus the target pass thresholds."""

    hard: tuple[MetricRule, ...] = DEFAULT_HARD
    target: tuple[MetricRule, ...] = DEFAULT_TARGET
    advisory: tuple[MetricRule, ...] = DEFAULT_ADVISORY
    min_target_passes: int = 4
    min_warning_passes: int = 3

    def to_dict(self) -> dict:
        return {
            "hard": [r.to_dict() for r in self.hard],
            "target": [r.to_dict() for r in self.target],
            "advisory": [r.to_dict() for r in self.advisory],
            "min_target_passes": self.min_target_passes,
            "min_warning_passes": self.min_warning_passes,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> GatePolicy:
        """Build a policy; tiers missing from ``data`` keep their defaults."""
        if not data:
            return cls()

        def tier_rules(tier: Tier, default: tuple[MetricRule, ...]) -> tuple[MetricRule, ...]:
            rows = data.get(tier.value)
            if rows is None:
                return default
            return tuple(MetricRule.from_dict(r, tier) for r in rows)

        policy = cls(
            hard=tier_rules(Tier.HARD, DEFAULT_HARD),
            target=tier_rules(Tier.TARGET, DEFAULT_TARGET),
            advisory=tier_rules(Tier.ADVISORY, DEFAULT_ADVISORY),
            min_target_passes=int(data.get("min_target_passes", 4)),
            min_warning_passes=int(data.get("min_warning_passes", 3)),
        )
        if policy.min_warning_passes > policy.min_target_passes:
            raise ValueError("min_warning_passes cannot exceed min_target_passes")
        return policy
