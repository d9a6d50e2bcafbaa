"""Review stage: rank the analysis findings into a worklist."""

from __future__ import annotations

from collections import Counter

from ..collaborators.base import Finding
from ..config import PipelineConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)

HOTSPOT_LIMIT = 10


class FindingsReviewer:
    """Summarises findings per file and category against the criteria list."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def review(self, analysis: dict) -> dict:
        """Build the review artifact content from analysis content."""
        findings = [Finding.from_dict(f) for f in analysis.get("findings", [])]
        by_file = Counter(f.path for f in findings if f.path)
        by_category = Counter(f.category for f in findings)
        by_severity = Counter(f.severity for f in findings)

        hotspots = [
            {
                "path": path,
                "findings": count,
                "categories": sorted({f.category for f in findings if f.path == path}),
            }
            for path, count in by_file.most_common(HOTSPOT_LIMIT)
        ]

        build = analysis.get("build") or {}
        recommendations = []
        if build.get("error_count"):
            recommendations.append("Fix existing build errors before planning changes")
        if by_category.get("unsafe"):
            recommendations.append(f"Remove {by_category['unsafe']} unsafe operation(s)")
        if by_category.get("documentation"):
            recommendations.append("Document the public API of flagged modules")
        if by_category.get("complexity"):
            recommendations.append("Split functions above the complexity limit")
        if by_category.get("concurrency"):
            recommendations.append("Resolve concurrency diagnostics first; they block the gate")

        logger.info(f"Reviewed {len(findings)} finding(s) across {len(by_file)} file(s)")
        return {
            "total_findings": len(findings),
            "by_category": dict(sorted(by_category.items())),
            "by_severity": dict(sorted(by_severity.items())),
            "hotspots": hotspots,
            "criteria": list(self.config.review_criteria),
            "recommendations": recommendations,
        }
