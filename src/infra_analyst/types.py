"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

Role = Literal["user", "assistant"]
SeverityName = Literal["critical", "warning", "info"]
CategoryName = Literal["cost-optimization", "performance", "security", "compliance", "trend"]

SEVERITY_RANK: dict[str, int] = {"critical": 3, "warning": 2, "info": 1}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- data store records -------------------------------------------------------


@dataclass(slots=True)
class Account:
    id: int
    name: str
    provider: str
    account_ref: str
    status: str = "active"
    last_sync_at: datetime | None = None


@dataclass(slots=True)
class Resource:
    """A synced cloud resource. `monthly_cost` is kept as a decimal string."""

    id: int
    account_id: int
    resource_id: str
    name: str
    type: str
    provider: str
    status: str
    region: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    monthly_cost: str | None = None
    last_updated: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class CostRecord:
    id: int
    account_id: int
    service: str
    amount: str
    date: datetime
    currency: str = "USD"
    period: str = "daily"


@dataclass(slots=True)
class Alert:
    id: int
    title: str
    description: str
    severity: str
    type: str
    account_id: int | None = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utcnow)


# --- conversation state -------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class AccountScope:
    """Accounts a query is restricted to; `account_ids=None` means all."""

    account_ids: tuple[int, ...] | None = None

    @classmethod
    def all(cls) -> "AccountScope":
        return cls(None)

    @classmethod
    def of(cls, *account_ids: int) -> "AccountScope":
        return cls(tuple(sorted(set(account_ids))))

    @property
    def is_all(self) -> bool:
        return self.account_ids is None

    def as_param(self) -> list[int] | None:
        return None if self.account_ids is None else list(self.account_ids)

    def describe(self) -> str:
        if self.account_ids is None:
            return "all accounts"
        if len(self.account_ids) == 1:
            return f"account {self.account_ids[0]}"
        return "accounts " + ", ".join(str(i) for i in self.account_ids)


@dataclass(frozen=True, slots=True)
class CollectedData:
    """Typed bag of tool outputs gathered during a turn.

    Merge rules: list collections are unioned by record identity (`id` or
    `resource_id`); `statistics` and `tool_errors` are key-merged with the newer
    value winning.
    """

    resources: tuple[dict[str, Any], ...] = ()
    costs: tuple[dict[str, Any], ...] = ()
    accounts: tuple[dict[str, Any], ...] = ()
    alerts: tuple[dict[str, Any], ...] = ()
    statistics: dict[str, Any] = field(default_factory=dict)
    tool_errors: dict[str, str] = field(default_factory=dict)

    def merge(self, other: "CollectedData") -> "CollectedData":
        return CollectedData(
            resources=_union_records(self.resources, other.resources),
            costs=_union_records(self.costs, other.costs),
            accounts=_union_records(self.accounts, other.accounts),
            alerts=_union_records(self.alerts, other.alerts),
            statistics={**self.statistics, **other.statistics},
            tool_errors={**self.tool_errors, **other.tool_errors},
        )

    @property
    def is_empty(self) -> bool:
        return not (
            self.resources or self.costs or self.accounts or self.alerts or self.statistics
        )


def _record_identity(record: dict[str, Any]) -> Any:
    for key in ("resource_id", "id"):
        if record.get(key) is not None:
            return (key, record[key])
    return ("repr", repr(sorted(record.items(), key=lambda item: item[0])))


def _union_records(
    left: tuple[dict[str, Any], ...], right: tuple[dict[str, Any], ...]
) -> tuple[dict[str, Any], ...]:
    merged: dict[Any, dict[str, Any]] = {}
    for record in (*left, *right):
        merged[_record_identity(record)] = record
    return tuple(merged.values())


@dataclass(frozen=True, slots=True)
class ConversationState:
    """Per-session state. Every transition returns a new instance."""

    session_id: str
    messages: tuple[Message, ...] = ()
    scope: AccountScope = field(default_factory=AccountScope.all)
    collected: CollectedData = field(default_factory=CollectedData)

    def with_message(self, role: Role, content: str) -> "ConversationState":
        return replace(self, messages=(*self.messages, Message(role=role, content=content)))

    def with_data(self, data: CollectedData) -> "ConversationState":
        return replace(self, collected=self.collected.merge(data))

    def with_scope(self, scope: AccountScope | None) -> "ConversationState":
        if scope is None:
            return self
        return replace(self, scope=scope)

    def history(self, limit: int | None = None) -> list[dict[str, str]]:
        messages = self.messages if limit is None else self.messages[-limit:]
        return [{"role": m.role, "content": m.content} for m in messages]


# --- planning -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A requested tool invocation."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(slots=True)
class PlanStep:
    id: str
    description: str
    tools: list[str]
    completed: bool = False
    findings: dict[str, Any] | None = None


@dataclass(slots=True)
class ResearchPlan:
    steps: list[PlanStep]
    intent: str = "general"
    priority: Literal["high", "medium", "low"] = "medium"
    complexity: Literal["simple", "moderate", "complex", "comprehensive"] = "simple"

    def next_step(self) -> PlanStep | None:
        for step in self.steps:
            if not step.completed:
                return step
        return None

    def tool_names(self) -> set[str]:
        return {name for step in self.steps for name in step.tools}


# --- execution and findings ---------------------------------------------------


@dataclass(slots=True)
class ToolExecutionResult:
    """Outcome of one tool invocation, successful or not."""

    tool_name: str
    params: dict[str, Any]
    output: Any = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: float = 0.0
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class Insight:
    category: CategoryName
    severity: SeverityName
    finding: str
    evidence: list[dict[str, Any]]
    recommendation: str
    impact: str
    impact_amount: float = 0.0

    @property
    def severity_rank(self) -> int:
        return SEVERITY_RANK[self.severity]


@dataclass(slots=True)
class Visualization:
    type: Literal["metric", "bar", "pie", "table", "line"]
    title: str
    data: Any
    description: str | None = None


class Phase(str, Enum):
    """States of the per-turn analysis machine."""

    PLANNING = "planning"
    EXECUTING = "executing"
    SYNTHESIZING = "synthesizing"
    RESPONDING = "responding"
    DONE = "done"


@dataclass(slots=True)
class TurnResult:
    answer: str
    findings: list[Insight]
    updated_state: ConversationState
    visualizations: list[Visualization] = field(default_factory=list)
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    cycles: int = 0
    forced_finish: bool = False
    trace_id: str | None = None
