"""Planners that decide which tools run in each executing step."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from infra_analyst.agent.llm import LLMProvider, tool_result_message
from infra_analyst.agent.registry import ToolRegistry
from infra_analyst.config import AgentConfig
from infra_analyst.errors import PlanningExhaustedError
from infra_analyst.types import (
    AccountScope,
    ConversationState,
    PlanStep,
    ResearchPlan,
    ToolCall,
    ToolExecutionResult,
)

logger = logging.getLogger(__name__)

# First match wins, in this order.
INTENT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "cost",
        (
            "cost",
            "spend",
            "bill",
            "optimization",
            "optimize",
            "stopped",
            "idle",
            "unattached",
            "waste",
            "savings",
            "price",
        ),
    ),
    ("performance", ("performance", "utilization", "capacity")),
    ("security", ("security", "compliance", "audit")),
)

_URGENT_KEYWORDS = ("critical", "urgent")


@dataclass(frozen=True, slots=True)
class Strategy:
    complexity: str
    steps: tuple[tuple[str, str, tuple[str, ...]], ...]


STRATEGIES: dict[str, Strategy] = {
    "cost": Strategy(
        complexity="comprehensive",
        steps=(
            ("account_overview", "Get all accounts and basic info", ("get_accounts",)),
            (
                "cost_breakdown",
                "Analyze cost patterns by service and time",
                ("get_costs", "summarize_costs_by_service"),
            ),
            (
                "resource_inventory",
                "Catalog all resources for cost correlation",
                ("get_resources",),
            ),
            (
                "optimization_scan",
                "Identify idle and unattached resources",
                ("find_stopped_instances", "find_unattached_volumes", "get_resource_stats"),
            ),
            ("trend_analysis", "Analyze spending trends and patterns", ("analyze_cost_trends",)),
        ),
    ),
    "performance": Strategy(
        complexity="moderate",
        steps=(
            (
                "resource_health",
                "Check resource status and distribution",
                ("get_resources", "get_resource_stats"),
            ),
            (
                "capacity_analysis",
                "Find stopped capacity that is still provisioned",
                ("find_stopped_instances",),
            ),
            ("alerting_review", "Review active alerts and incidents", ("get_active_alerts",)),
        ),
    ),
    "security": Strategy(
        complexity="complex",
        steps=(
            ("resource_inventory", "Catalog all resources for security review", ("get_resources",)),
            (
                "access_analysis",
                "Review security groups and exposed ports",
                ("analyze_security_groups",),
            ),
            ("compliance_check", "Check open security and compliance alerts", ("get_active_alerts",)),
            ("vulnerability_scan", "Summarize the resource footprint", ("get_resource_stats",)),
        ),
    ),
    "general": Strategy(
        complexity="comprehensive",
        steps=(
            (
                "multi_cloud_inventory",
                "Get complete infrastructure across all clouds",
                ("get_accounts", "get_resources"),
            ),
            ("service_mapping", "Map resources by type", ("get_resource_stats",)),
            (
                "cost_correlation",
                "Correlate resources with costs",
                ("get_costs", "summarize_costs_by_service"),
            ),
            (
                "health_assessment",
                "Assess overall infrastructure health",
                ("get_active_alerts", "find_stopped_instances"),
            ),
        ),
    ),
}


def classify_intent(query: str) -> str:
    lowered = query.lower()
    for intent, keywords in INTENT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return intent
    return "general"


class PlanRun(Protocol):
    """Per-turn planning cursor driven by the analysis graph."""

    def next_calls(self, results: list[ToolExecutionResult]) -> list[ToolCall]:
        """Record `results` of the previous step and return the next batch.

        An empty list means there is nothing left to run.
        """


class Planner(Protocol):
    def start(self, query: str, state: ConversationState) -> PlanRun: ...


class DeterministicPlanner:
    """Keyword-driven planner with a fixed, finite step list per intent."""

    def __init__(self, registry: ToolRegistry | None = None) -> None:
        self.registry = registry

    def plan(self, query: str, scope: AccountScope | None = None) -> ResearchPlan:
        intent = classify_intent(query)
        strategy = STRATEGIES[intent]
        steps = [
            PlanStep(id=step_id, description=description, tools=self._available(tools))
            for step_id, description, tools in strategy.steps
        ]
        lowered = query.lower()
        plan = ResearchPlan(
            steps=[step for step in steps if step.tools],
            intent=intent,
            priority="high" if any(word in lowered for word in _URGENT_KEYWORDS) else "medium",
            complexity=strategy.complexity,  # type: ignore[arg-type]
        )
        logger.info(
            "planned intent=%s steps=%d scope=%s",
            intent,
            len(plan.steps),
            (scope or AccountScope.all()).describe(),
        )
        return plan

    def start(self, query: str, state: ConversationState) -> "StepRun":
        return StepRun(self.plan(query, state.scope))

    def _available(self, tools: tuple[str, ...]) -> list[str]:
        if self.registry is None:
            return list(tools)
        return [name for name in tools if name in self.registry]


@dataclass(slots=True)
class StepRun:
    """Walks a `ResearchPlan` one step per executing cycle."""

    plan: ResearchPlan
    _current: PlanStep | None = None

    def next_calls(self, results: list[ToolExecutionResult]) -> list[ToolCall]:
        if self._current is not None:
            self._current.findings = {
                result.tool_name: result.output if result.ok else {"error": result.error}
                for result in results
            }
            self._current.completed = True
        self._current = self.plan.next_step()
        if self._current is None:
            return []
        return [ToolCall(name=name) for name in self._current.tools]


DELEGATED_SYSTEM_PROMPT = """
You are a cloud infrastructure analyst with read-only access to account, resource,
cost and alert data through tools.

Rules:
1) Call tools to gather the data needed to answer; never invent numbers.
2) Request several independent tools in the same turn when possible.
3) Stop calling tools as soon as the collected data answers the question.
4) Only analyze {scope}.
""".strip()


class DelegatedPlanner:
    """Lets the LLM choose tool calls, bounded by `AgentConfig.max_cycles`.

    A cycle is one provider call. Once `max_cycles` calls have been made the
    run raises `PlanningExhaustedError` instead of asking again.
    """

    def __init__(
        self,
        provider: LLMProvider,
        registry: ToolRegistry,
        config: AgentConfig | None = None,
        *,
        history_limit: int = 10,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.config = config or AgentConfig()
        self.history_limit = history_limit

    def initial_messages(self, query: str, state: ConversationState) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [
            {
                "role": "system",
                "content": DELEGATED_SYSTEM_PROMPT.format(scope=state.scope.describe()),
            }
        ]
        messages.extend(state.history(self.history_limit))
        messages.append({"role": "user", "content": query})
        return messages

    def start(self, query: str, state: ConversationState) -> "DelegatedRun":
        return DelegatedRun(self, self.initial_messages(query, state))


@dataclass(slots=True)
class DelegatedRun:
    planner: DelegatedPlanner
    messages: list[dict[str, Any]]
    provider_calls: int = 0
    _pending: list[ToolCall] = field(default_factory=list)

    def next_calls(self, results: list[ToolExecutionResult]) -> list[ToolCall]:
        for call, result in zip(self._pending, results):
            payload = result.output if result.ok else {"error": result.error}
            self.messages.append(tool_result_message(call, payload))
        self._pending = []

        if self.provider_calls >= self.planner.config.max_cycles:
            raise PlanningExhaustedError(self.provider_calls)
        self.provider_calls += 1
        completion = self.planner.provider.complete(self.messages, tools=self.planner.registry.list())
        calls = [
            ToolCall(
                name=call.name,
                params=call.params,
                call_id=call.call_id or f"call_{self.provider_calls}_{index}",
            )
            for index, call in enumerate(completion.tool_calls)
        ]
        self.messages.append(
            {"role": "assistant", "content": completion.content, "tool_calls": calls}
        )
        logger.debug(
            "delegated cycle=%d requested=%s", self.provider_calls, [c.name for c in calls]
        )
        self._pending = calls
        return list(calls)
