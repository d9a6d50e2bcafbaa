"""Derive gate observations from collaborator output.

The analysis phase records a ``Baseline``; validation compares the current
build, test and lint results against it. Every metric also gets the set of
files its failures point at, which lets the evaluator name the change most
likely responsible.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from ..collaborators.base import BuildResult, Finding, TestResult

# metrics derived from each collaborator, unobserved when it times out
BUILD_METRICS = ("compiler_errors", "new_warnings")
TEST_METRICS = ("prior_tests_passing_pct", "behavior_preserved", "coverage_delta")
LINT_METRICS = (
    "race_diagnostics",
    "unsafe_reduction_pct",
    "doc_coverage_pct",
    "style_compliance_pct",
    "avg_complexity",
    "max_complexity",
    "lint_findings",
)


@dataclass
class Baseline:
    """Pre-change measurements captured during analysis."""

    warning_count: int = 0
    unsafe_count: int = 0
    coverage: Optional[float] = None
    tests_total: int = 0
    failing_tests: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "warning_count": self.warning_count,
            "unsafe_count": self.unsafe_count,
            "coverage": self.coverage,
            "tests_total": self.tests_total,
            "failing_tests": self.failing_tests,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Baseline:
        data = data or {}
        return cls(
            warning_count=int(data.get("warning_count", 0)),
            unsafe_count=int(data.get("unsafe_count", 0)),
            coverage=data.get("coverage"),
            tests_total=int(data.get("tests_total", 0)),
            failing_tests=list(data.get("failing_tests", [])),
        )

    @classmethod
    def capture(
        cls,
        build: Optional[BuildResult],
        tests: Optional[TestResult],
        findings: Iterable[Finding],
    ) -> Baseline:
        findings = list(findings)
        return cls(
            warning_count=build.warning_count if build else 0,
            unsafe_count=sum(1 for f in findings if f.category == "unsafe"),
            coverage=tests.coverage if tests else None,
            tests_total=tests.total if tests else 0,
            failing_tests=[d.test_id for d in tests.failure_details] if tests else [],
        )


@dataclass
class Observations:
    values: dict[str, Any]
    affected_files: dict[str, list[str]]

    def unobserved(self, names: Iterable[str]) -> None:
        """Mark metrics as not measured so their rules fail."""
        for name in names:
            self.values[name] = None


def _percent_clean(files: Iterable[str], flagged: set[str]) -> float:
    files = set(files)
    if not files:
        return 100.0
    return 100.0 * len(files - flagged) / len(files)


def collect_observations(
    *,
    build: BuildResult,
    tests: Optional[TestResult],
    findings: Iterable[Finding],
    files: Iterable[str],
    baseline: Optional[Baseline] = None,
    signals: Optional[Mapping[str, Any]] = None,
) -> Observations:
    """Turn raw collaborator output into the evaluator's input mapping.

    Args:
        build: Current build result
        tests: Current test result, or None when no test suite is configured
        findings: Current static analysis findings
        files: Source files in scope, the denominator for per-file percentages
        baseline: Measurements from the analysis phase
        signals: Explicit metric values that override anything derived

    Returns:
        Observed values and per-metric affected files
    """
    baseline = baseline or Baseline()
    findings = list(findings)
    files = list(files)

    by_category: dict[str, list[Finding]] = defaultdict(list)
    for finding in findings:
        by_category[finding.category].append(finding)

    def paths(category: str) -> list[str]:
        return sorted({f.path for f in by_category[category] if f.path})

    values: dict[str, Any] = {}
    affected: dict[str, list[str]] = {}

    values["compiler_errors"] = build.error_count
    affected["compiler_errors"] = sorted({d.path for d in build.diagnostics if d.severity == "error" and d.path})
    values["new_warnings"] = max(0, build.warning_count - baseline.warning_count)
    affected["new_warnings"] = sorted({d.path for d in build.diagnostics if d.severity == "warning" and d.path})

    values["race_diagnostics"] = len(by_category["concurrency"])
    affected["race_diagnostics"] = paths("concurrency")

    if tests is None:
        values["prior_tests_passing_pct"] = 100.0
        values["behavior_preserved"] = None
    else:
        previously_failing = set(baseline.failing_tests)
        regressions = [d for d in tests.failure_details if d.test_id not in previously_failing]
        if tests.failure_details or not tests.failed:
            regressed = len(regressions)
        else:
            # Counts without details: assume every failure is new.
            regressed = tests.failed
        prior_passing = max(tests.total - len(previously_failing), 0)
        if prior_passing:
            values["prior_tests_passing_pct"] = 100.0 * max(prior_passing - regressed, 0) / prior_passing
        else:
            values["prior_tests_passing_pct"] = 100.0
        values["behavior_preserved"] = regressed == 0
        regressed_paths = sorted({d.path for d in regressions if d.path})
        affected["prior_tests_passing_pct"] = regressed_paths
        affected["behavior_preserved"] = regressed_paths

    unsafe_now = len(by_category["unsafe"])
    if baseline.unsafe_count:
        values["unsafe_reduction_pct"] = 100.0 * (baseline.unsafe_count - unsafe_now) / baseline.unsafe_count
    else:
        values["unsafe_reduction_pct"] = 100.0 if unsafe_now == 0 else 0.0
    affected["unsafe_reduction_pct"] = paths("unsafe")

    values["doc_coverage_pct"] = _percent_clean(files, set(paths("documentation")))
    affected["doc_coverage_pct"] = paths("documentation")
    values["style_compliance_pct"] = _percent_clean(files, set(paths("style")))
    affected["style_compliance_pct"] = paths("style")

    complexities = [f.value for f in by_category["complexity"] if f.value is not None]
    values["avg_complexity"] = sum(complexities) / len(complexities) if complexities else 0.0
    values["max_complexity"] = max(complexities) if complexities else 0.0
    affected["avg_complexity"] = paths("complexity")
    affected["max_complexity"] = paths("complexity")

    if tests is not None and tests.coverage is not None and baseline.coverage is not None:
        values["coverage_delta"] = tests.coverage - baseline.coverage
    else:
        values["coverage_delta"] = None

    lint_findings = [f for f in findings if f.category != "metric"]
    values["lint_findings"] = len(lint_findings)
    affected["lint_findings"] = sorted({f.path for f in lint_findings if f.path})

    for finding in by_category["metric"]:
        values[finding.rule] = finding.value
        if finding.path:
            affected.setdefault(finding.rule, []).append(finding.path)

    if signals:
        values.update(signals)

    return Observations(values=values, affected_files=affected)
