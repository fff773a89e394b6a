import pytest

from infra_analyst.agent.llm import Completion
from infra_analyst.agent.planner import (
    STRATEGIES,
    DelegatedPlanner,
    DeterministicPlanner,
    classify_intent,
)
from infra_analyst.agent.registry import ToolRegistry
from infra_analyst.agent.tools import register_builtin_tools
from infra_analyst.config import AgentConfig
from infra_analyst.errors import PlanningExhaustedError
from infra_analyst.store import InMemoryDataStore
from infra_analyst.types import ConversationState, ToolCall, ToolExecutionResult


class AlwaysCallsTools:
    def __init__(self) -> None:
        self.calls = 0
        self.seen_messages: list[list[dict]] = []

    def complete(self, messages, tools=None) -> Completion:
        self.calls += 1
        self.seen_messages.append(list(messages))
        return Completion(content="", tool_calls=[ToolCall(name="get_accounts")])


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, InMemoryDataStore())
    registry.freeze()
    return registry


@pytest.mark.parametrize(
    ("query", "intent"),
    [
        ("What are our biggest cost drivers this month?", "cost"),
        ("show stopped instances", "cost"),
        ("any unattached volumes?", "cost"),
        ("How is capacity utilization looking?", "performance"),
        ("Run a security audit", "security"),
        ("Give me an overview of the estate", "general"),
        ("security cost review", "cost"),
    ],
)
def test_intent_classification(query: str, intent: str) -> None:
    assert classify_intent(query) == intent


@pytest.mark.parametrize("intent", sorted(STRATEGIES))
def test_every_strategy_plans_known_tools(registry, intent: str) -> None:
    queries = {
        "cost": "reduce cost",
        "performance": "performance check",
        "security": "compliance status",
        "general": "what do we run",
    }
    plan = DeterministicPlanner(registry).plan(queries[intent])

    assert plan.intent == intent
    assert 0 < len(plan.steps) <= 10
    assert plan.tool_names() <= set(registry.names())
    assert all(not step.completed for step in plan.steps)


def test_priority_follows_urgency() -> None:
    planner = DeterministicPlanner()

    assert planner.plan("URGENT: cost spike").priority == "high"
    assert planner.plan("cost spike").priority == "medium"
    assert planner.plan("cost spike").complexity == "comprehensive"


def test_step_run_walks_plan_and_records_findings(registry) -> None:
    run = DeterministicPlanner(registry).start("security audit", ConversationState(session_id="s"))

    first = run.next_calls([])
    assert [c.name for c in first] == ["get_resources"]

    result = ToolExecutionResult(tool_name="get_resources", params={}, output={"total": 0})
    second = run.next_calls([result])
    assert [c.name for c in second] == ["analyze_security_groups"]
    assert run.plan.steps[0].completed
    assert run.plan.steps[0].findings == {"get_resources": {"total": 0}}

    remaining = 0
    while run.next_calls([]):
        remaining += 1
    assert remaining == len(run.plan.steps) - 2
    assert run.plan.next_step() is None


def test_delegated_run_stops_at_cycle_cap(registry) -> None:
    provider = AlwaysCallsTools()
    planner = DelegatedPlanner(provider, registry, AgentConfig(max_cycles=3))
    run = planner.start("anything", ConversationState(session_id="s"))

    batch = run.next_calls([])
    for _ in range(2):
        results = [ToolExecutionResult(tool_name=c.name, params={}, output={"total": 0}) for c in batch]
        batch = run.next_calls(results)

    with pytest.raises(PlanningExhaustedError) as excinfo:
        run.next_calls([ToolExecutionResult(tool_name="get_accounts", params={}, output={})])
    assert excinfo.value.cycles == 3
    assert provider.calls == 3


def test_delegated_messages_carry_history_and_tool_results(registry) -> None:
    provider = AlwaysCallsTools()
    planner = DelegatedPlanner(provider, registry)
    state = (
        ConversationState(session_id="s")
        .with_message("user", "earlier question")
        .with_message("assistant", "earlier answer")
    )
    run = planner.start("follow up", state)

    calls = run.next_calls([])
    run.next_calls([ToolExecutionResult(tool_name="get_accounts", params={}, output={"total": 2})])

    first, second = provider.seen_messages
    assert first[0]["role"] == "system"
    assert [m["content"] for m in first[1:]] == ["earlier question", "earlier answer", "follow up"]
    assert second[-2]["role"] == "assistant"
    assert second[-1] == {"role": "tool", "content": '{"total": 2}', "tool_call_id": calls[0].call_id}
