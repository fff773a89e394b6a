"""Explicit state machine driving one analysis turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from infra_analyst.agent.executor import ToolExecutor, collected_from_results
from infra_analyst.agent.planner import Planner
from infra_analyst.analysis.formatter import ResponseFormatter
from infra_analyst.analysis.insights import InsightSynthesizer
from infra_analyst.errors import InvalidTransitionError, PlanningExhaustedError, ProviderError
from infra_analyst.types import (
    CollectedData,
    ConversationState,
    Insight,
    Phase,
    ToolCall,
    ToolExecutionResult,
    Visualization,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.PLANNING: frozenset({Phase.EXECUTING, Phase.SYNTHESIZING}),
    Phase.EXECUTING: frozenset({Phase.EXECUTING, Phase.SYNTHESIZING}),
    Phase.SYNTHESIZING: frozenset({Phase.RESPONDING}),
    Phase.RESPONDING: frozenset({Phase.DONE}),
    Phase.DONE: frozenset(),
}


def advance(current: Phase, target: Phase) -> Phase:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move from {current.value} to {target.value}",
            details={"from": current.value, "to": target.value},
        )
    return target


def after_execution(pending: list[ToolCall]) -> Phase:
    """Stay in executing while tool calls are pending."""
    return Phase.EXECUTING if pending else Phase.SYNTHESIZING


@dataclass(slots=True)
class GraphOutcome:
    answer: str
    insights: list[Insight]
    summary: dict[str, Any]
    collected: CollectedData
    visualizations: list[Visualization] = field(default_factory=list)
    tool_results: list[ToolExecutionResult] = field(default_factory=list)
    phases: list[Phase] = field(default_factory=list)
    cycles: int = 0
    forced_finish: bool = False
    intent: str | None = None
    response_mode: str = "template"


class AnalysisGraph:
    """planning -> executing* -> synthesizing -> responding -> done.

    The graph never touches session storage; it returns the data collected in
    this turn and the caller decides whether to commit it. Insights are derived
    from this turn's data only. A provider failure before any tool has run
    fails the turn; once tools have run it ends planning early and the answer
    falls back to the template.
    """

    def __init__(
        self,
        *,
        planner: Planner,
        executor: ToolExecutor,
        synthesizer: InsightSynthesizer,
        formatter: ResponseFormatter,
    ) -> None:
        self.planner = planner
        self.executor = executor
        self.synthesizer = synthesizer
        self.formatter = formatter

    def run(self, query: str, state: ConversationState) -> GraphOutcome:
        phase = Phase.PLANNING
        phases = [phase]
        collected = CollectedData()
        tool_results: list[ToolExecutionResult] = []
        cycles = 0
        forced = provider_down = False

        run = self.planner.start(query, state)
        pending = run.next_calls([])
        plan = getattr(run, "plan", None)
        intent = plan.intent if plan is not None else "delegated"

        phase = advance(phase, after_execution(pending))
        phases.append(phase)
        while phase is Phase.EXECUTING:
            results = self.executor.run_batch(pending, state.scope)
            cycles += 1
            tool_results.extend(results)
            collected = collected.merge(collected_from_results(results))
            try:
                pending = run.next_calls(results)
            except PlanningExhaustedError as exc:
                logger.warning("%s; finishing with collected data", exc.message)
                forced = True
                pending = []
            except ProviderError as exc:
                logger.warning(
                    "provider failed after %d cycles (%s); finishing with collected data",
                    cycles,
                    exc.message,
                )
                forced = provider_down = True
                pending = []
            phase = advance(phase, after_execution(pending))
            phases.append(phase)

        insights = self.synthesizer.synthesize(collected)
        summary = self.synthesizer.summarize(collected, insights)

        phase = advance(phase, Phase.RESPONDING)
        phases.append(phase)
        formatted = self.formatter.render(
            query,
            insights,
            summary,
            collected,
            scope=state.scope.describe(),
            template_only=provider_down,
        )

        phase = advance(phase, Phase.DONE)
        phases.append(phase)
        logger.info(
            "turn complete intent=%s cycles=%d tools=%d insights=%d forced=%s",
            intent,
            cycles,
            len(tool_results),
            len(insights),
            forced,
        )
        return GraphOutcome(
            answer=formatted.answer,
            insights=insights,
            summary=summary,
            collected=collected,
            visualizations=formatted.visualizations,
            tool_results=tool_results,
            phases=phases,
            cycles=cycles,
            forced_finish=forced,
            intent=intent,
            response_mode=formatted.mode,
        )
