"""Deterministic answer template used when no LLM is involved or it fails."""

from __future__ import annotations

from typing import Any

from infra_analyst.types import Insight

NO_DATA_ANSWER = "No infrastructure data was available to answer this question."


def render_template_answer(
    query: str,
    insights: list[Insight],
    summary: dict[str, Any],
    *,
    scope: str = "all accounts",
    max_findings: int = 5,
) -> str:
    """Fill the fixed answer template from ranked insights and headline stats."""
    if not insights and not summary.get("total_resources") and not summary.get("total_cost"):
        lines = [NO_DATA_ANSWER]
        lines.extend(_gap_lines(summary))
        return "\n".join(lines)

    lines = [
        f'Analysis of {scope} for "{query.strip()}":',
        _summary_line(summary),
        "",
    ]
    if insights:
        lines.append("Findings:")
        for idx, insight in enumerate(insights[:max_findings], start=1):
            lines.append(f"{idx}. [{insight.severity.upper()}] {insight.finding}")
            lines.append(f"   Recommendation: {insight.recommendation}")
            lines.append(f"   Impact: {insight.impact}")
        remaining = len(insights) - max_findings
        if remaining > 0:
            lines.append(f"...and {remaining} more findings.")
    else:
        lines.append("No issues were found in the collected data.")
    lines.extend(_gap_lines(summary))
    return "\n".join(lines)


def _summary_line(summary: dict[str, Any]) -> str:
    return (
        f"Summary: {summary.get('total_resources', 0)} resources, "
        f"${float(summary.get('total_cost', 0.0)):,.2f} total cost, "
        f"{summary.get('critical_issues', 0)} critical issues, "
        f"{summary.get('optimization_opportunities', 0)} optimization opportunities."
    )


def _gap_lines(summary: dict[str, Any]) -> list[str]:
    gaps = summary.get("data_gaps") or []
    if not gaps:
        return []
    return ["", f"Note: data from {', '.join(gaps)} could not be retrieved; results may be incomplete."]
