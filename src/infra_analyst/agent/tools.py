"""Built-in read-only infrastructure tools."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from infra_analyst.agent.registry import ToolRegistry, ToolSpec
from infra_analyst.store import DataStore

STOPPED_STATUSES = frozenset({"stopped", "stopped-deallocated", "deallocated", "suspended"})
UNATTACHED_STATUSES = frozenset({"available", "unattached"})
_INSTANCE_TYPE_HINTS = ("instance", "vm", "warehouse")
_VOLUME_TYPE_HINTS = ("volume", "disk")
_GB_MONTH_PRICE = 0.08
_WORLD_CIDRS = frozenset({"0.0.0.0/0", "::/0"})
_ADMIN_PORTS = {22: "SSH", 3389: "RDP"}

Timeframe = Literal["current-month", "last-month", "last-3-months", "all"]


class ScopedInput(BaseModel):
    account_ids: list[int] | None = Field(
        default=None, description="Account IDs to query. Omit for all accounts."
    )


class AccountsInput(BaseModel):
    include_inactive: bool = True


class ResourcesInput(ScopedInput):
    provider: str | None = Field(default=None, description="aws, azure, gcp, snowflake")
    type: str | None = Field(default=None, description="e.g. ec2-instance, ebs-volume")
    status: str | None = Field(default=None, description="e.g. running, stopped, available")
    region: str | None = None


class ResourceStatsInput(ScopedInput):
    group_by: Literal["type", "status", "region", "provider"] = "type"


class StoppedInstancesInput(ScopedInput):
    region: str | None = None
    min_age_days: int = Field(default=0, ge=0)


class UnattachedVolumesInput(ScopedInput):
    region: str | None = None
    min_size_gb: int | None = Field(default=None, ge=0)


class CostsInput(ScopedInput):
    timeframe: Timeframe = "all"


class CostSummaryInput(ScopedInput):
    top_n: int = Field(default=10, ge=1, le=50)
    timeframe: Timeframe = "current-month"


class CostTrendInput(ScopedInput):
    period: Literal["daily", "weekly", "monthly"] = "daily"
    lookback_days: int = Field(default=30, ge=1, le=366)


class AlertsInput(ScopedInput):
    severity: Literal["critical", "warning", "info"] | None = None
    unread_only: bool = False


class SecurityGroupsInput(ScopedInput):
    include_unused: bool = True


def register_builtin_tools(
    registry: ToolRegistry,
    store: DataStore,
    *,
    clock: Callable[[], datetime] | None = None,
) -> None:
    """Register the default tool set used by both planners.

    Every tool only reads from `store`, so repeating a call is always safe.
    `clock` is injectable so age and date-range calculations are reproducible.
    """

    now = clock or (lambda: datetime.now(timezone.utc))

    def _accounts(input_data: AccountsInput) -> dict[str, Any]:
        accounts = store.list_accounts()
        if not input_data.include_inactive:
            accounts = [a for a in accounts if a.status == "active"]
        return {"accounts": [to_record(a) for a in accounts], "total": len(accounts)}

    def _resources(input_data: ResourcesInput) -> dict[str, Any]:
        filters = {
            key: value
            for key, value in (
                ("provider", input_data.provider),
                ("type", input_data.type),
                ("status", input_data.status),
                ("region", input_data.region),
            )
            if value is not None
        }
        resources = store.list_resources(input_data.account_ids, filters or None)
        return {
            "resources": [to_record(r) for r in resources],
            "total": len(resources),
            "total_monthly_cost": round(sum(parse_amount(r.monthly_cost) for r in resources), 2),
        }

    def _resource_stats(input_data: ResourceStatsInput) -> dict[str, Any]:
        resources = store.list_resources(input_data.account_ids)
        groups: dict[str, list[Any]] = defaultdict(list)
        for resource in resources:
            key = getattr(resource, input_data.group_by) or "global"
            groups[key].append(resource)
        breakdown = [
            {
                input_data.group_by: key,
                "count": len(items),
                "total_cost": round(sum(parse_amount(r.monthly_cost) for r in items), 2),
                "percentage": round(len(items) / len(resources) * 100, 1),
            }
            for key, items in groups.items()
        ]
        breakdown.sort(key=lambda row: (-row["count"], str(row[input_data.group_by])))
        return {
            "grouped_by": input_data.group_by,
            "total_resources": len(resources),
            "total_monthly_cost": round(sum(parse_amount(r.monthly_cost) for r in resources), 2),
            "breakdown": breakdown,
        }

    def _stopped_instances(input_data: StoppedInstancesInput) -> dict[str, Any]:
        current = now()
        resources = store.list_resources(input_data.account_ids)
        instances = []
        for resource in resources:
            if resource.status not in STOPPED_STATUSES or not is_instance_type(resource.type):
                continue
            if input_data.region and resource.region != input_data.region:
                continue
            record = to_record(resource)
            age = idle_age_days(record, current)
            if age < input_data.min_age_days:
                continue
            record["age_days"] = age
            record["owner"] = owner_tag(resource.metadata)
            instances.append(record)
        instances.sort(key=lambda r: (-r["age_days"], -parse_amount(r["monthly_cost"])))
        monthly = sum(parse_amount(r["monthly_cost"]) for r in instances)
        return {
            "resources": instances,
            "total": len(instances),
            "total_monthly_cost": round(monthly, 2),
            "total_annual_savings": round(monthly * 12, 2),
        }

    def _unattached_volumes(input_data: UnattachedVolumesInput) -> dict[str, Any]:
        resources = store.list_resources(input_data.account_ids)
        volumes = []
        for resource in resources:
            if resource.status not in UNATTACHED_STATUSES or not is_volume_type(resource.type):
                continue
            if input_data.region and resource.region != input_data.region:
                continue
            size = _volume_size(resource.metadata)
            if input_data.min_size_gb is not None and size < input_data.min_size_gb:
                continue
            record = to_record(resource)
            if resource.monthly_cost is None:
                record["monthly_cost"] = f"{size * _GB_MONTH_PRICE:.2f}"
            volumes.append(record)
        savings = sum(parse_amount(v["monthly_cost"]) for v in volumes)
        return {
            "resources": volumes,
            "total": len(volumes),
            "estimated_monthly_savings": round(savings, 2),
        }

    def _costs(input_data: CostsInput) -> dict[str, Any]:
        records = store.list_costs(input_data.account_ids, timeframe_range(input_data.timeframe, now()))
        return {
            "costs": [to_record(c) for c in records],
            "total": len(records),
            "total_amount": round(sum(parse_amount(c.amount) for c in records), 2),
        }

    def _cost_summary(input_data: CostSummaryInput) -> dict[str, Any]:
        records = store.list_costs(input_data.account_ids, timeframe_range(input_data.timeframe, now()))
        totals = service_totals(to_record(c) for c in records)
        grand_total = sum(totals.values())
        ranked = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
        services = [
            {
                "service": service,
                "total": round(amount, 2),
                "share": round(amount / grand_total, 4) if grand_total else 0.0,
            }
            for service, amount in ranked[: input_data.top_n]
        ]
        return {
            "timeframe": input_data.timeframe,
            "total_cost": round(grand_total, 2),
            "services": services,
            "top3_share": round(sum(s["share"] for s in services[:3]), 4),
        }

    def _cost_trends(input_data: CostTrendInput) -> dict[str, Any]:
        current = now()
        records = store.list_costs(
            input_data.account_ids,
            (current - timedelta(days=input_data.lookback_days), current),
        )
        buckets: dict[str, float] = defaultdict(float)
        for record in records:
            buckets[_bucket(record.date, input_data.period)] += parse_amount(record.amount)
        series = [{"date": key, "amount": round(buckets[key], 2)} for key in sorted(buckets)]
        trend_pct = half_over_half(series)
        return {
            "period": input_data.period,
            "lookback_days": input_data.lookback_days,
            "total_cost": round(sum(buckets.values()), 2),
            "series": series,
            "trend_percentage": round(trend_pct, 1),
            "trend_direction": trend_direction(trend_pct),
        }

    def _alerts(input_data: AlertsInput) -> dict[str, Any]:
        alerts = store.list_alerts(input_data.account_ids, input_data.unread_only)
        if input_data.severity:
            alerts = [a for a in alerts if a.severity == input_data.severity]
        counts = {level: sum(1 for a in alerts if a.severity == level) for level in ("critical", "warning", "info")}
        return {
            "alerts": [to_record(a) for a in alerts],
            "total": len(alerts),
            "severity_counts": counts,
            "unread": sum(1 for a in alerts if not a.is_read),
        }

    def _security_groups(input_data: SecurityGroupsInput) -> dict[str, Any]:
        resources = store.list_resources(input_data.account_ids)
        groups = [r for r in resources if r.type == "security-group"]
        attached = {
            str(ref.get("GroupId", ref)) if isinstance(ref, dict) else str(ref)
            for r in resources
            if is_instance_type(r.type)
            for ref in r.metadata.get("security_groups", [])
        }
        findings = []
        for group in groups:
            for rule in group.metadata.get("rules", []):
                if rule.get("cidr") not in _WORLD_CIDRS:
                    continue
                for port, label in _ADMIN_PORTS.items():
                    if _port_in_rule(rule, port):
                        findings.append(
                            {
                                "security_group_id": group.resource_id,
                                "name": group.name,
                                "severity": "critical",
                                "finding": f"{label} (port {port}) open to the world",
                                "recommendation": f"Restrict {label} access to known address ranges",
                            }
                        )
        unused = (
            [{"resource_id": g.resource_id, "name": g.name} for g in groups if g.resource_id not in attached]
            if input_data.include_unused
            else []
        )
        return {
            "security_groups": len(groups),
            "findings": findings,
            "unused_groups": unused,
        }

    registry.register(
        ToolSpec(
            name="get_accounts",
            description="List configured cloud accounts with provider, status and last sync time.",
            args_schema=AccountsInput,
            handler=_accounts,
            tags=["accounts"],
            cache_ttl_seconds=300,
        )
    )
    registry.register(
        ToolSpec(
            name="get_resources",
            description="Fetch cloud resources, filterable by provider, type, status and region.",
            args_schema=ResourcesInput,
            handler=_resources,
            tags=["resources", "inventory"],
            cache_ttl_seconds=180,
        )
    )
    registry.register(
        ToolSpec(
            name="get_resource_stats",
            description="Resource counts and monthly cost grouped by type, status, region or provider.",
            args_schema=ResourceStatsInput,
            handler=_resource_stats,
            tags=["resources", "statistics"],
            cache_ttl_seconds=240,
        )
    )
    registry.register(
        ToolSpec(
            name="find_stopped_instances",
            description=(
                "Find stopped instances that still incur storage cost, with age in days, "
                "owner tag and monthly cost. Use for idle or wasted compute questions."
            ),
            args_schema=StoppedInstancesInput,
            handler=_stopped_instances,
            tags=["resources", "cost-optimization"],
            cache_ttl_seconds=300,
        )
    )
    registry.register(
        ToolSpec(
            name="find_unattached_volumes",
            description="Find storage volumes not attached to any instance and estimate monthly savings.",
            args_schema=UnattachedVolumesInput,
            handler=_unattached_volumes,
            tags=["resources", "cost-optimization"],
            cache_ttl_seconds=600,
        )
    )
    registry.register(
        ToolSpec(
            name="get_costs",
            description="Raw cost records by service and date for a timeframe.",
            args_schema=CostsInput,
            handler=_costs,
            tags=["costs"],
            cache_ttl_seconds=900,
        )
    )
    registry.register(
        ToolSpec(
            name="summarize_costs_by_service",
            description="Rank services by total cost and report how concentrated spending is.",
            args_schema=CostSummaryInput,
            handler=_cost_summary,
            tags=["costs", "statistics"],
            cache_ttl_seconds=900,
        )
    )
    registry.register(
        ToolSpec(
            name="analyze_cost_trends",
            description="Bucket spending by day, week or month and report the trend direction.",
            args_schema=CostTrendInput,
            handler=_cost_trends,
            tags=["costs", "trend"],
            cache_ttl_seconds=1800,
        )
    )
    registry.register(
        ToolSpec(
            name="get_active_alerts",
            description="Current alerts with severity counts; can be limited to unread alerts.",
            args_schema=AlertsInput,
            handler=_alerts,
            tags=["alerts"],
            cache_ttl_seconds=60,
        )
    )
    registry.register(
        ToolSpec(
            name="analyze_security_groups",
            description="Detect security groups exposing SSH or RDP to the internet and unused groups.",
            args_schema=SecurityGroupsInput,
            handler=_security_groups,
            tags=["security", "compliance"],
            cache_ttl_seconds=600,
        )
    )


def to_record(obj: Any) -> dict[str, Any]:
    """Convert a store dataclass into a JSON-friendly dict."""
    record = asdict(obj)
    for key, value in record.items():
        if isinstance(value, (datetime, date)):
            record[key] = value.isoformat()
    return record


def parse_amount(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def idle_age_days(record: dict[str, Any], current: datetime) -> int:
    """Days since the resource last changed state.

    Prefers `metadata.stopped_at`, falling back to `last_updated`.
    """
    if isinstance(record.get("age_days"), int):
        return record["age_days"]
    metadata = record.get("metadata") or {}
    changed = parse_timestamp(metadata.get("stopped_at")) or parse_timestamp(record.get("last_updated"))
    if changed is None:
        return 0
    return max(0, (current - changed).days)


def owner_tag(metadata: dict[str, Any]) -> str:
    tags = metadata.get("tags") or {}
    for key in ("Owner", "owner", "Email", "email", "CreatedBy"):
        if tags.get(key):
            return str(tags[key])
    return "unknown"


def is_instance_type(resource_type: str) -> bool:
    lowered = resource_type.lower()
    return any(hint in lowered for hint in _INSTANCE_TYPE_HINTS) or lowered in {"ec2", "rds"}


def is_volume_type(resource_type: str) -> bool:
    lowered = resource_type.lower()
    return any(hint in lowered for hint in _VOLUME_TYPE_HINTS)


def is_idle(record: dict[str, Any]) -> bool:
    status = str(record.get("status", "")).lower()
    resource_type = str(record.get("type", ""))
    if status in STOPPED_STATUSES:
        return True
    return status in UNATTACHED_STATUSES and is_volume_type(resource_type)


def service_totals(records: Any) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for record in records:
        totals[record.get("service") or "Unknown"] += parse_amount(record.get("amount"))
    return dict(totals)


def timeframe_range(timeframe: str, current: datetime) -> tuple[datetime | None, datetime | None] | None:
    month_start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "current-month":
        return (month_start, current)
    if timeframe == "last-month":
        previous_end = month_start - timedelta(microseconds=1)
        return (previous_end.replace(day=1, hour=0, minute=0, second=0, microsecond=0), previous_end)
    if timeframe == "last-3-months":
        return (current - timedelta(days=90), current)
    return None


def half_over_half(series: list[dict[str, Any]]) -> float:
    """Percent change of the second half's mean over the first half's."""
    if len(series) < 2:
        return 0.0
    middle = len(series) // 2
    first = [row["amount"] for row in series[:middle]]
    second = [row["amount"] for row in series[middle:]]
    first_avg = sum(first) / len(first)
    second_avg = sum(second) / len(second)
    if first_avg == 0:
        return 0.0
    return (second_avg - first_avg) / first_avg * 100.0


def trend_direction(percentage: float, threshold: float = 5.0) -> str:
    if percentage > threshold:
        return "increasing"
    if percentage < -threshold:
        return "decreasing"
    return "stable"


def _bucket(moment: datetime, period: str) -> str:
    if period == "monthly":
        return f"{moment.year}-{moment.month:02d}"
    if period == "weekly":
        return (moment - timedelta(days=moment.weekday())).date().isoformat()
    return moment.date().isoformat()


def _volume_size(metadata: dict[str, Any]) -> int:
    try:
        return int(metadata.get("size") or metadata.get("size_gb") or 0)
    except (TypeError, ValueError):
        return 0


def _port_in_rule(rule: dict[str, Any], port: int) -> bool:
    low = rule.get("from_port")
    high = rule.get("to_port", low)
    if low is None:
        return False
    return int(low) <= port <= int(high)
