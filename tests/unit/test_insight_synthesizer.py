from datetime import timedelta

import pytest

from infra_analyst.analysis.insights import InsightSynthesizer, rank
from infra_analyst.types import CollectedData, Insight


def _insight(severity: str, category: str = "cost-optimization", amount: float = 0.0) -> Insight:
    return Insight(
        category=category,
        severity=severity,
        finding=f"{severity} finding",
        evidence=[],
        recommendation="do something",
        impact="some impact",
        impact_amount=amount,
    )


def _resource(resource_id: str, status: str, cost: str, age_days: int, now, rtype: str = "ec2-instance") -> dict:
    return {
        "resource_id": resource_id,
        "name": resource_id,
        "type": rtype,
        "status": status,
        "monthly_cost": cost,
        "metadata": {},
        "last_updated": (now - timedelta(days=age_days)).isoformat(),
    }


def test_rank_orders_by_severity() -> None:
    ranked = rank([_insight("info"), _insight("critical"), _insight("warning")])

    assert [i.severity for i in ranked] == ["critical", "warning", "info"]


def test_rank_breaks_ties_by_impact_then_category() -> None:
    ranked = rank(
        [
            _insight("warning", "trend", 10.0),
            _insight("warning", "security", 0.0),
            _insight("warning", "cost-optimization", 250.0),
            _insight("warning", "performance", 0.0),
        ]
    )

    assert [i.category for i in ranked] == ["cost-optimization", "trend", "performance", "security"]


@pytest.mark.parametrize(
    ("amount", "severity"),
    [("25000", "critical"), ("15000", "warning"), ("10000", "info")],
)
def test_cost_severity_thresholds(amount: str, severity: str) -> None:
    data = CollectedData(costs=({"id": 1, "service": "EC2", "amount": amount},))

    insights = InsightSynthesizer().synthesize(data)

    assert insights[0].category == "cost-optimization"
    assert insights[0].severity == severity


def test_cost_insight_names_dominant_service() -> None:
    data = CollectedData(
        costs=(
            {"id": 1, "service": "EC2", "amount": "120"},
            {"id": 2, "service": "S3", "amount": "30"},
        )
    )

    [insight] = InsightSynthesizer().synthesize(data)

    assert "$150.00" in insight.finding
    assert "EC2" in insight.finding and "80.0%" in insight.finding
    assert insight.recommendation.startswith("Focus optimization efforts on EC2")
    assert insight.evidence[0] == {"service": "EC2", "total": 120.0, "share": 0.8}


def test_cost_insight_without_dominant_service() -> None:
    data = CollectedData(
        costs=tuple({"id": i, "service": f"svc-{i}", "amount": "10"} for i in range(5))
    )

    [insight] = InsightSynthesizer().synthesize(data)

    assert insight.recommendation.startswith("Review resource utilization")


@pytest.mark.parametrize(
    ("cost", "age", "severity"),
    [
        ("5.00", 3, "info"),
        ("60.00", 3, "warning"),
        ("5.00", 40, "warning"),
        ("600.00", 3, "critical"),
        ("25.00", 120, "critical"),
    ],
)
def test_idle_severity_scales_with_savings_and_age(now, cost: str, age: int, severity: str) -> None:
    data = CollectedData(resources=(_resource("i-1", "stopped", cost, age, now),))

    [insight] = InsightSynthesizer(clock=lambda: now).synthesize(data)

    assert insight.severity == severity
    assert insight.evidence[0]["high_risk"] is (age >= 90)


def test_idle_insight_counts_only_idle_resources(now) -> None:
    data = CollectedData(
        resources=(
            _resource("i-stopped", "stopped", "25.00", 10, now),
            _resource("i-running", "running", "80.00", 10, now),
            _resource("vol-free", "available", "8.00", 10, now, rtype="ebs-volume"),
            _resource("db-free", "available", "90.00", 10, now, rtype="rds-instance"),
        )
    )

    [insight] = InsightSynthesizer(clock=lambda: now).synthesize(data)

    assert {e["resource_id"] for e in insight.evidence} == {"i-stopped", "vol-free"}
    assert insight.impact_amount == 33.0
    assert "$33.00/month" in insight.finding


def test_stopped_at_metadata_wins_over_last_updated(now) -> None:
    record = _resource("i-1", "stopped", "1.00", 1, now)
    record["metadata"] = {"stopped_at": (now - timedelta(days=95)).isoformat()}

    [insight] = InsightSynthesizer(clock=lambda: now).synthesize(CollectedData(resources=(record,)))

    assert insight.evidence[0]["age_days"] == 95
    assert insight.severity == "critical"


def test_unread_critical_alerts_escalate() -> None:
    data = CollectedData(
        alerts=(
            {"id": 1, "title": "Disk full", "description": "Free space", "severity": "critical", "type": "performance", "is_read": False},
            {"id": 2, "title": "Old outage", "description": "", "severity": "critical", "type": "performance", "is_read": True},
            {"id": 3, "title": "Budget", "description": "", "severity": "warning", "type": "cost", "is_read": False},
            {"id": 4, "title": "Root login", "description": "MFA off", "severity": "critical", "type": "security", "is_read": False},
        )
    )

    insights = InsightSynthesizer().synthesize(data)

    assert [i.finding for i in insights] == ["Critical alert: Disk full", "Critical alert: Root login"]
    assert all(i.severity == "critical" for i in insights)
    assert [i.category for i in insights] == ["performance", "security"]


def test_trend_and_security_statistics() -> None:
    data = CollectedData(
        statistics={
            "analyze_cost_trends": {
                "series": [{"date": "2025-06-01", "amount": 100.0}, {"date": "2025-06-02", "amount": 130.0}],
                "trend_percentage": 30.0,
                "total_cost": 230.0,
                "lookback_days": 30,
            },
            "analyze_security_groups": {
                "findings": [{"security_group_id": "sg-1", "finding": "SSH (port 22) open to the world"}],
                "unused_groups": [],
            },
        }
    )

    insights = InsightSynthesizer().synthesize(data)

    assert [(i.category, i.severity) for i in insights] == [("security", "critical"), ("trend", "warning")]
    assert insights[1].impact_amount == 69.0


def test_summary_notes_data_gaps() -> None:
    data = CollectedData(tool_errors={"get_costs": "Tool get_costs failed: boom"})
    synthesizer = InsightSynthesizer()

    summary = synthesizer.summarize(data, synthesizer.synthesize(data))

    assert summary["data_gaps"] == ["get_costs"]
    assert summary["total_cost"] == 0.0
