"""Report generation stage (explanation)."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..models import Artifact
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ReportGenerator:
    """Generates the explanation artifact and the human-readable summary."""

    def __init__(self, summary_path: Path) -> None:
        self.summary_path = summary_path

    def generate(
        self,
        context: Optional[Artifact],
        plan: Optional[Artifact],
        execution_log: Optional[Artifact],
        validation: Optional[Artifact],
    ) -> dict:
        """Build explanation content and write ``summary.md``.

        Returns:
            Explanation artifact content
        """
        logger.info("Generating summary report")
        verdict = (validation.content.get("verdict") if validation else None) or "unknown"
        status = {
            "passed": "SUCCESS",
            "passed_with_warnings": "PARTIAL",
        }.get(verdict, "FAILED")

        entries = execution_log.content.get("entries", []) if execution_log else []
        completed = [e for e in entries if e.get("status") == "completed"]
        changes = plan.content.get("changes", []) if plan else []

        content = {
            "status": status,
            "verdict": verdict,
            "files_scanned": (context.content.get("summary", {}).get("total_files", 0) if context else 0),
            "changes_planned": len(changes),
            "changes_completed": len(completed),
            "lines_added": sum(e.get("added", 0) for e in completed),
            "lines_removed": sum(e.get("removed", 0) for e in completed),
            "notices": plan.content.get("notices", []) if plan else [],
            "gate_failures": validation.content.get("failures", []) if validation else [],
            "changes": [
                {
                    "id": c["id"],
                    "title": c.get("title", ""),
                    "risk_level": c.get("risk_level"),
                    "note": c.get("note", ""),
                }
                for c in changes
            ],
        }

        self.summary_path.parent.mkdir(parents=True, exist_ok=True)
        self.summary_path.write_text(render_markdown(content, validation), encoding="utf-8")
        logger.info(f"Summary written to {self.summary_path}")
        return content


def render_markdown(content: dict, validation: Optional[Artifact]) -> str:
    lines = [
        "# Refactor Summary",
        "",
        f"- Status: **{content['status']}** (gate verdict: {content['verdict']})",
        "",
        "## Overview",
        "",
        f"- Files scanned: {content['files_scanned']}",
        f"- Changes completed: {content['changes_completed']} / {content['changes_planned']}",
        f"- Lines: +{content['lines_added']} / -{content['lines_removed']}",
        "",
        "## Changes",
        "",
    ]
    for change in content["changes"]:
        line = f"- `{change['id']}` {change['title']} ({change['risk_level']})"
        if change["note"]:
            line += f" - {change['note']}"
        lines.append(line)

    lines += ["", "## Gates", ""]
    metrics = validation.content.get("metrics", []) if validation else []
    lines.append("| Metric | Tier | Observed | Required | Result |")
    lines.append("|---|---|---|---|---|")
    for metric in metrics:
        result = {True: "pass", False: "FAIL", None: "not evaluated"}[metric.get("passed")]
        lines.append(
            f"| {metric['name']} | {metric['tier']} | {metric.get('observed_value')} "
            f"| {metric['comparison']} {metric['threshold']} | {result} |"
        )

    if content["gate_failures"]:
        lines += ["", "## Recommendations", ""]
        for failure in content["gate_failures"]:
            culprit = failure.get("responsible_change_id")
            hint = f" (start with change `{culprit}`)" if culprit else ""
            lines.append(f"- Bring `{failure['name']}` to {failure['comparison']} {failure['threshold']}{hint}")

    return "\n".join(lines) + "\n"
