"""Public entry point: one call per chat turn."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from infra_analyst.agent.cache import ToolCache
from infra_analyst.agent.executor import ToolExecutor
from infra_analyst.agent.graph import AnalysisGraph
from infra_analyst.agent.llm import LLMProvider
from infra_analyst.agent.planner import DelegatedPlanner, DeterministicPlanner, Planner
from infra_analyst.agent.registry import ToolRegistry
from infra_analyst.agent.tools import register_builtin_tools
from infra_analyst.analysis.formatter import ResponseFormatter
from infra_analyst.analysis.insights import InsightSynthesizer
from infra_analyst.config import AgentConfig, CacheConfig, InsightThresholds
from infra_analyst.errors import (
    AnalystError,
    DataStoreUnavailableError,
    ProviderError,
    TurnFailedError,
)
from infra_analyst.obs.tracing import Timer, TraceStore
from infra_analyst.store import DataStore
from infra_analyst.types import AccountScope, ConversationState, TurnResult

logger = logging.getLogger(__name__)


class SessionStore:
    """Holds one `ConversationState` per session id.

    Each session carries a generation number that changes when the session is
    discarded. A turn commits only if the generation it started from is still
    current, so results of a discarded session never become visible.
    """

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}
        self._generations: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> ConversationState:
        with self._lock:
            state = self._states.get(session_id)
        if state is None:
            raise KeyError(f"Session not found: {session_id}")
        return state

    def checkout(self, session_id: str) -> tuple[ConversationState, int]:
        """Current state (fresh if unknown) and the generation to commit against."""
        with self._lock:
            state = self._states.get(session_id) or ConversationState(session_id=session_id)
            return state, self._generations.get(session_id, 0)

    def commit(self, session_id: str, state: ConversationState, generation: int) -> bool:
        with self._lock:
            if self._generations.get(session_id, 0) != generation:
                return False
            self._states[session_id] = state
            return True

    def discard(self, session_id: str) -> bool:
        with self._lock:
            self._generations[session_id] = self._generations.get(session_id, 0) + 1
            return self._states.pop(session_id, None) is not None

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._states

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._states)


class AnalysisOrchestrator:
    """Runs the analysis graph for a session and commits the new state.

    On failure the session is left exactly as it was before the turn and a
    `TurnFailedError` carrying a readable message is raised.
    """

    def __init__(
        self,
        *,
        graph: AnalysisGraph,
        registry: ToolRegistry,
        cache: ToolCache,
        config: AgentConfig | None = None,
        sessions: SessionStore | None = None,
        trace_store: TraceStore | None = None,
    ) -> None:
        self.graph = graph
        self.registry = registry
        self.cache = cache
        self.config = config or AgentConfig()
        self.sessions = sessions if sessions is not None else SessionStore()
        self.trace_store = trace_store if trace_store is not None else TraceStore()

    def process_turn(
        self,
        session_id: str,
        query: str,
        account_scope: AccountScope | None = None,
    ) -> TurnResult:
        if not query or not query.strip():
            raise TurnFailedError("Please enter a question to analyze.")

        state, generation = self.sessions.checkout(session_id)
        working = state.with_scope(account_scope).with_message("user", query)

        timer = Timer()
        try:
            with timer:
                outcome = self.graph.run(query, working)
        except AnalystError as exc:
            logger.error("turn failed session=%s: %s", session_id, exc.message)
            self.trace_store.create_record(
                session_id=session_id,
                query=query,
                answer="",
                tool_results=[],
                latency_ms=timer.elapsed_ms,
                status="failed",
                error=exc.message,
            )
            raise TurnFailedError(failure_message(exc), details={"cause": exc.code}) from exc

        updated = working.with_data(outcome.collected).with_message("assistant", outcome.answer)
        if not self.sessions.commit(session_id, updated, generation):
            logger.info("session %s was discarded mid-turn; result not committed", session_id)

        record = self.trace_store.create_record(
            session_id=session_id,
            query=query,
            answer=outcome.answer,
            tool_results=outcome.tool_results,
            latency_ms=timer.elapsed_ms,
            intent=outcome.intent,
            phases=outcome.phases,
            cycles=outcome.cycles,
            forced_finish=outcome.forced_finish,
            insight_count=len(outcome.insights),
            response_mode=outcome.response_mode,
        )
        if record.latency_ms > self.config.target_latency_seconds * 1000.0:
            logger.warning(
                "turn exceeded latency target session=%s latency_ms=%.0f", session_id, record.latency_ms
            )
        return TurnResult(
            answer=outcome.answer,
            findings=outcome.insights,
            updated_state=updated,
            visualizations=outcome.visualizations,
            tool_results=outcome.tool_results,
            phases=outcome.phases,
            cycles=outcome.cycles,
            forced_finish=outcome.forced_finish,
            trace_id=record.trace_id,
        )


def failure_message(exc: AnalystError) -> str:
    if isinstance(exc, DataStoreUnavailableError):
        reason = "the infrastructure data store is unavailable"
    elif isinstance(exc, ProviderError):
        reason = "the language model provider is unavailable"
    else:
        reason = exc.message
    return f"The analysis could not be completed because {reason}. Please try again."


def create_orchestrator(
    store: DataStore,
    *,
    config: AgentConfig | None = None,
    provider: LLMProvider | None = None,
    registry: ToolRegistry | None = None,
    cache: ToolCache | None = None,
    cache_config: CacheConfig | None = None,
    thresholds: InsightThresholds | None = None,
    trace_store: TraceStore | None = None,
    clock: Callable[[], datetime] | None = None,
) -> AnalysisOrchestrator:
    """Wire registry, cache, planner and formatter for `store`.

    The built-in tools are registered into `registry` (a new one by default),
    which is then frozen; its observer feeds per-tool stats into `trace_store`.
    `provider` is required when `config.planner_mode` is `delegated`; for
    `response_mode="llm"` it is optional and the template is used without it.
    """
    config = config or AgentConfig()
    registry = registry if registry is not None else ToolRegistry()
    register_builtin_tools(registry, store, clock=clock)
    registry.freeze()
    trace_store = trace_store if trace_store is not None else TraceStore()
    registry.set_observer(trace_store.record_tool)
    cache = cache if cache is not None else ToolCache(cache_config)

    planner: Planner
    if config.planner_mode == "delegated":
        if provider is None:
            raise ValueError("planner_mode='delegated' requires an LLM provider")
        planner = DelegatedPlanner(provider, registry, config)
    else:
        planner = DeterministicPlanner(registry)

    synthesizer = (
        InsightSynthesizer(thresholds, clock=clock) if clock else InsightSynthesizer(thresholds)
    )
    graph = AnalysisGraph(
        planner=planner,
        executor=ToolExecutor(registry, cache, config),
        synthesizer=synthesizer,
        formatter=ResponseFormatter(config, provider=provider),
    )
    return AnalysisOrchestrator(
        graph=graph,
        registry=registry,
        cache=cache,
        config=config,
        trace_store=trace_store,
    )
