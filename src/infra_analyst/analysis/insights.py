"""Rule-based insight synthesis over collected tool data."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from infra_analyst.agent.tools import idle_age_days, is_idle, parse_amount, service_totals
from infra_analyst.config import InsightThresholds
from infra_analyst.types import CollectedData, Insight, utcnow

logger = logging.getLogger(__name__)


def rank(insights: list[Insight]) -> list[Insight]:
    """Severity first, then larger dollar impact, then category name."""
    return sorted(insights, key=lambda i: (-i.severity_rank, -i.impact_amount, i.category))


class InsightSynthesizer:
    """Derives ranked findings from `CollectedData` without calling the LLM.

    Every rule is a pure function of the collected data, the thresholds and the
    injected clock, so the same data always yields the same findings in the same
    order.
    """

    def __init__(
        self,
        thresholds: InsightThresholds | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.thresholds = thresholds or InsightThresholds()
        self._clock = clock

    def synthesize(self, data: CollectedData) -> list[Insight]:
        insights: list[Insight] = []
        for rule in (
            self._cost_insight,
            self._idle_insight,
            self._trend_insight,
            self._security_insight,
        ):
            found = rule(data)
            if found is not None:
                insights.append(found)
        insights.extend(self._alert_insights(data))
        ranked = rank(insights)
        logger.debug("synthesized %d insights", len(ranked))
        return ranked

    def summarize(self, data: CollectedData, insights: list[Insight]) -> dict[str, Any]:
        """Headline numbers shown next to the findings."""
        return {
            "total_resources": len(data.resources),
            "total_cost": round(self._cost_breakdown(data)[0], 2),
            "accounts": len(data.accounts),
            "alerts": len(data.alerts),
            "critical_issues": sum(1 for i in insights if i.severity == "critical"),
            "optimization_opportunities": sum(
                1 for i in insights if i.category == "cost-optimization"
            ),
            "security_findings": sum(1 for i in insights if i.category == "security"),
            "data_gaps": sorted(data.tool_errors),
        }

    # --- rules ---------------------------------------------------------------

    def _cost_insight(self, data: CollectedData) -> Insight | None:
        total, services = self._cost_breakdown(data)
        if not services:
            return None
        t = self.thresholds
        if total > t.cost_critical:
            severity = "critical"
        elif total > t.cost_warning:
            severity = "warning"
        else:
            severity = "info"

        top_service, top_amount = services[0]
        share = top_amount / total if total else 0.0
        if share > t.dominant_share:
            recommendation = (
                f"Focus optimization efforts on {top_service} which represents "
                f"{share * 100:.1f}% of total costs"
            )
        else:
            recommendation = "Review resource utilization across all services for optimization opportunities"

        evidence = [
            {
                "service": service,
                "total": round(amount, 2),
                "share": round(amount / total, 4) if total else 0.0,
            }
            for service, amount in services[: t.evidence_limit]
        ]
        return Insight(
            category="cost-optimization",
            severity=severity,
            finding=(
                f"Total infrastructure cost is ${total:,.2f} across {len(services)} services; "
                f"{top_service} is the largest at {share * 100:.1f}%"
            ),
            evidence=evidence,
            recommendation=recommendation,
            impact=f"${total:,.2f} of spend under review",
            impact_amount=round(total, 2),
        )

    def _idle_insight(self, data: CollectedData) -> Insight | None:
        now = self._clock()
        t = self.thresholds
        idle = []
        for record in data.resources:
            if not is_idle(record):
                continue
            age = idle_age_days(record, now)
            idle.append(
                {
                    "resource_id": record.get("resource_id"),
                    "name": record.get("name"),
                    "type": record.get("type"),
                    "status": record.get("status"),
                    "region": record.get("region"),
                    "monthly_cost": round(parse_amount(record.get("monthly_cost")), 2),
                    "age_days": age,
                    "high_risk": age >= t.idle_age_high_days,
                }
            )
        if not idle:
            return None

        savings = sum(item["monthly_cost"] for item in idle)
        oldest = max(item["age_days"] for item in idle)
        high_risk = sum(1 for item in idle if item["high_risk"])
        if savings >= t.idle_savings_critical or oldest >= t.idle_age_high_days:
            severity = "critical"
        elif savings >= t.idle_savings_warning or oldest >= t.idle_age_medium_days:
            severity = "warning"
        else:
            severity = "info"

        idle.sort(key=lambda item: (-item["age_days"], -item["monthly_cost"], str(item["resource_id"])))
        finding = f"{len(idle)} idle resources (stopped or unattached) costing ${savings:,.2f}/month"
        if high_risk:
            finding += f"; {high_risk} idle for {t.idle_age_high_days}+ days"
        return Insight(
            category="cost-optimization",
            severity=severity,
            finding=finding,
            evidence=idle[: t.evidence_limit],
            recommendation=(
                "Terminate or snapshot and delete idle resources after confirming with their owners; "
                "schedule instances that are only needed part-time"
            ),
            impact=f"Save approximately ${savings:,.2f} monthly (${savings * 12:,.2f} annually)",
            impact_amount=round(savings, 2),
        )

    def _trend_insight(self, data: CollectedData) -> Insight | None:
        stats = data.statistics.get("analyze_cost_trends")
        if not isinstance(stats, dict) or not stats.get("series"):
            return None
        pct = float(stats.get("trend_percentage") or 0.0)
        if abs(pct) <= self.thresholds.trend_threshold_pct:
            return None
        total = parse_amount(stats.get("total_cost"))
        change = abs(total * pct / 100.0)
        rising = pct > 0
        return Insight(
            category="trend",
            severity="warning" if rising else "info",
            finding=(
                f"Spending is {'increasing' if rising else 'decreasing'} {abs(pct):.1f}% "
                f"over the last {stats.get('lookback_days', 30)} days"
            ),
            evidence=list(stats["series"])[-self.thresholds.evidence_limit :],
            recommendation=(
                "Identify the services driving the increase and set a budget alert"
                if rising
                else "Keep the recent optimizations in place and track the new baseline"
            ),
            impact=f"About ${change:,.2f} change versus the earlier period",
            impact_amount=round(change, 2) if rising else 0.0,
        )

    def _security_insight(self, data: CollectedData) -> Insight | None:
        stats = data.statistics.get("analyze_security_groups")
        if not isinstance(stats, dict):
            return None
        findings = list(stats.get("findings") or [])
        if findings:
            return Insight(
                category="security",
                severity="critical",
                finding=f"{len(findings)} security group rules expose SSH or RDP to the internet",
                evidence=findings[: self.thresholds.evidence_limit],
                recommendation="Restrict administrative ports to known address ranges or a bastion host",
                impact="Removes direct internet exposure of administrative access",
            )
        unused = list(stats.get("unused_groups") or [])
        if unused:
            return Insight(
                category="compliance",
                severity="info",
                finding=f"{len(unused)} security groups are not attached to any instance",
                evidence=unused[: self.thresholds.evidence_limit],
                recommendation="Delete unused security groups to keep rule audits small",
                impact="Smaller attack surface and simpler audits",
            )
        return None

    def _alert_insights(self, data: CollectedData) -> list[Insight]:
        insights = []
        for alert in data.alerts:
            if alert.get("severity") != "critical" or alert.get("is_read"):
                continue
            alert_type = str(alert.get("type") or "")
            category = alert_type if alert_type in ("security", "compliance") else "performance"
            insights.append(
                Insight(
                    category=category,  # type: ignore[arg-type]
                    severity="critical",
                    finding=f"Critical alert: {alert.get('title', 'untitled')}",
                    evidence=[alert],
                    recommendation=(
                        f"Act on this alert now: {alert.get('description') or alert.get('title')}"
                    ),
                    impact="Prevents service disruption",
                )
            )
        return insights

    # --- helpers -------------------------------------------------------------

    @staticmethod
    def _cost_breakdown(data: CollectedData) -> tuple[float, list[tuple[str, float]]]:
        if data.costs:
            totals = service_totals(data.costs)
        else:
            summary = data.statistics.get("summarize_costs_by_service")
            if not isinstance(summary, dict):
                return 0.0, []
            totals = {
                str(row.get("service")): parse_amount(row.get("total"))
                for row in summary.get("services") or []
            }
        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        return sum(totals.values()), ranked
