"""Final answer rendering: fixed template or LLM paragraph, plus chart data."""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate

from infra_analyst.agent.fallback import render_template_answer
from infra_analyst.agent.llm import LLMProvider
from infra_analyst.agent.tools import is_idle, parse_amount, service_totals
from infra_analyst.config import AgentConfig
from infra_analyst.errors import ProviderError
from infra_analyst.types import CollectedData, Insight, Visualization

logger = logging.getLogger(__name__)

RESPONSE_SYSTEM_PROMPT = """
You are an expert cloud infrastructure analyst writing for an infrastructure decision-maker.

Rules:
1) Use only the findings and summary provided; do not introduce new numbers.
2) Answer the user's question directly in the first sentence.
3) Present findings in the given order, which is already ranked by severity and impact.
4) Give each recommendation together with its business impact.
5) If the data notes gaps, say which data could not be retrieved.
""".strip()

RESPONSE_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", RESPONSE_SYSTEM_PROMPT),
        (
            "human",
            "QUESTION: {query}\n"
            "SCOPE: {scope}\n\n"
            "KEY FINDINGS:\n{findings}\n\n"
            "SUMMARY:\n{summary}",
        ),
    ]
)

_ROLE_BY_TYPE = {"system": "system", "human": "user", "ai": "assistant"}


@dataclass(slots=True)
class FormattedResponse:
    answer: str
    visualizations: list[Visualization] = field(default_factory=list)
    mode: str = "template"


class ResponseFormatter:
    """Turns ranked insights into the user-facing answer.

    Never reads the data store: everything comes from the insight list, the
    summary and the data already collected for the turn. In `llm` mode any
    `ProviderError` falls back to the deterministic template.
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        *,
        provider: LLMProvider | None = None,
        max_findings: int = 5,
    ) -> None:
        self.config = config or AgentConfig()
        self.provider = provider
        self.max_findings = max_findings

    def render(
        self,
        query: str,
        insights: list[Insight],
        summary: dict[str, Any],
        data: CollectedData,
        *,
        scope: str = "all accounts",
        template_only: bool = False,
    ) -> FormattedResponse:
        visualizations = build_visualizations(data)
        template = render_template_answer(
            query, insights, summary, scope=scope, max_findings=self.max_findings
        )
        if template_only or self.config.response_mode != "llm" or self.provider is None:
            return FormattedResponse(answer=template, visualizations=visualizations)

        messages = build_response_messages(query, insights, summary, scope=scope)
        try:
            completion = self.provider.complete(messages)
        except ProviderError as exc:
            logger.warning("LLM response failed, using template: %s", exc.message)
            return FormattedResponse(answer=template, visualizations=visualizations)
        answer = completion.content.strip()
        if not answer:
            logger.warning("LLM returned an empty answer, using template")
            return FormattedResponse(answer=template, visualizations=visualizations)
        return FormattedResponse(answer=answer, visualizations=visualizations, mode="llm")


def build_response_messages(
    query: str,
    insights: list[Insight],
    summary: dict[str, Any],
    *,
    scope: str = "all accounts",
) -> list[dict[str, Any]]:
    """Grounded prompt for the final paragraph, as provider-neutral messages."""
    findings = "\n".join(
        f"{idx}. [{insight.severity.upper()}] ({insight.category}) {insight.finding}\n"
        f"   Recommendation: {insight.recommendation}\n"
        f"   Impact: {insight.impact}\n"
        f"   Evidence: {json.dumps(insight.evidence[:2], default=str)}"
        for idx, insight in enumerate(insights, start=1)
    ) or "No findings."
    prompt = RESPONSE_PROMPT.format_messages(
        query=query,
        scope=scope,
        findings=findings,
        summary=json.dumps(summary, indent=2, default=str),
    )
    return [_as_dict(message) for message in prompt]


def _as_dict(message: BaseMessage) -> dict[str, Any]:
    return {"role": _ROLE_BY_TYPE.get(message.type, "user"), "content": str(message.content)}


def build_visualizations(data: CollectedData) -> list[Visualization]:
    charts: list[Visualization] = []

    if data.costs:
        totals = service_totals(data.costs)
        grand_total = sum(totals.values())
        charts.append(
            Visualization(
                type="metric",
                title="Total Cost",
                data={"value": round(grand_total, 2), "currency": "USD"},
            )
        )
        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        charts.append(
            Visualization(
                type="pie",
                title="Cost by Service",
                data=[{"name": name, "value": round(value, 2)} for name, value in ranked],
                description=f"{len(ranked)} services",
            )
        )

    if data.resources:
        statuses = Counter(str(r.get("status") or "unknown") for r in data.resources)
        charts.append(
            Visualization(
                type="bar",
                title="Resources by Status",
                data=[{"name": name, "value": count} for name, count in sorted(statuses.items())],
            )
        )
        idle = [r for r in data.resources if is_idle(r)]
        if idle:
            charts.append(
                Visualization(
                    type="table",
                    title="Idle Resources",
                    data=[
                        {
                            "resource_id": r.get("resource_id"),
                            "name": r.get("name"),
                            "type": r.get("type"),
                            "status": r.get("status"),
                            "monthly_cost": round(parse_amount(r.get("monthly_cost")), 2),
                        }
                        for r in idle
                    ],
                    description="Stopped or unattached resources that still incur cost",
                )
            )

    trends = data.statistics.get("analyze_cost_trends")
    if isinstance(trends, dict) and trends.get("series"):
        charts.append(
            Visualization(
                type="line",
                title="Cost Trend",
                data=list(trends["series"]),
                description=f"Trend: {trends.get('trend_direction', 'stable')}",
            )
        )
    return charts
