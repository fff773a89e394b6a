import threading

from pydantic import BaseModel

from infra_analyst.agent.cache import ToolCache
from infra_analyst.agent.executor import ToolExecutor
from infra_analyst.agent.orchestrator import create_orchestrator
from infra_analyst.agent.registry import ToolRegistry, ToolSpec
from infra_analyst.config import AgentConfig
from infra_analyst.obs.tracing import TraceStore
from infra_analyst.types import AccountScope, ToolCall


class EchoInput(BaseModel):
    text: str


def _echo_registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _handler(data: EchoInput) -> str:
        return data.text.upper()

    registry.register(ToolSpec(name="echo", description="uppercase", args_schema=EchoInput, handler=_handler))
    return registry


def test_observer_sees_every_executor_outcome() -> None:
    registry = _echo_registry()
    observed = []
    registry.set_observer(observed.append)
    executor = ToolExecutor(registry, ToolCache())

    executor.run_one(ToolCall(name="echo", params={"text": "hello"}), AccountScope.all())
    executor.run_batch(
        [ToolCall(name="echo", params={"text": "hello"}), ToolCall(name="echo")],
        AccountScope.all(),
    )

    assert [(r.tool_name, r.ok, r.cache_hit) for r in observed] == [
        ("echo", True, False),
        ("echo", True, True),
        ("echo", False, False),
    ]
    assert observed[0].output == "HELLO"
    assert observed[0].duration_ms >= 0.0
    assert observed[2].error_kind == "validation"


def test_timed_out_call_is_reported_once() -> None:
    registry = ToolRegistry()
    release = threading.Event()

    def _slow(data: EchoInput) -> str:
        release.wait(5)
        return data.text

    registry.register(ToolSpec(name="slow", description="slow", args_schema=EchoInput, handler=_slow))
    observed = []
    registry.set_observer(observed.append)
    executor = ToolExecutor(registry, config=AgentConfig(tool_timeout_seconds=0.05))

    try:
        executor.run_batch([ToolCall(name="slow", params={"text": "x"})], AccountScope.all())
    finally:
        release.set()
    threading.Event().wait(0.1)

    assert [r.error_kind for r in observed] == ["timeout"]


def test_trace_store_aggregates_per_tool_stats() -> None:
    registry = _echo_registry()
    traces = TraceStore()
    registry.set_observer(traces.record_tool)
    executor = ToolExecutor(registry, ToolCache())

    executor.run_one(ToolCall(name="echo", params={"text": "a"}), AccountScope.all())
    executor.run_one(ToolCall(name="echo", params={"text": "a"}), AccountScope.all())
    executor.run_one(ToolCall(name="echo"), AccountScope.all())

    stats = traces.tool_stats()["echo"]
    assert stats["calls"] == 3
    assert stats["errors"] == 1
    assert stats["cache_hits"] == 1
    assert stats["avg_latency_ms"] >= 0.0
    assert traces.summary()["tools"] == traces.tool_stats()


def test_orchestrator_wires_tool_stats_into_metrics(sample_store, clock) -> None:
    orchestrator = create_orchestrator(sample_store, clock=clock)

    orchestrator.process_turn("s", "cost overview")

    tools = orchestrator.trace_store.summary()["tools"]
    assert tools["get_costs"]["calls"] == 1
    assert tools["get_costs"]["errors"] == 0
