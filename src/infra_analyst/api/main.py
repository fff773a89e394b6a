"""FastAPI entrypoint for chat, session, tool, cache and trace endpoints."""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from infra_analyst.agent.llm import LangChainProvider, LLMProvider, create_chat_model
from infra_analyst.agent.orchestrator import AnalysisOrchestrator, create_orchestrator
from infra_analyst.agent.registry import ToolRegistry
from infra_analyst.config import AgentConfig
from infra_analyst.errors import DataStoreUnavailableError, TurnFailedError
from infra_analyst.store import DataStore, InMemoryDataStore, load_store
from infra_analyst.types import AccountScope, ToolCall

logger = logging.getLogger(__name__)


def _create_provider(registry: ToolRegistry, config: AgentConfig) -> LLMProvider | None:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return None
    model = create_chat_model(os.getenv("OPENAI_MODEL", "gpt-4o-mini"), config)
    return LangChainProvider(model, registry=registry, config=config)


def _create_store() -> DataStore:
    seed_file = os.getenv("ANALYST_SEED_FILE")
    if seed_file:
        return load_store(seed_file)
    return InMemoryDataStore()


def _build_orchestrator() -> AnalysisOrchestrator:
    config = AgentConfig(
        planner_mode=os.getenv("ANALYST_PLANNER_MODE", "deterministic"),
        response_mode=os.getenv("ANALYST_RESPONSE_MODE", "template"),
    )
    registry = ToolRegistry()
    provider = _create_provider(registry, config)
    if provider is None and config.planner_mode == "delegated":
        logger.warning("OPENAI_API_KEY is not set; using the deterministic planner")
        config = config.model_copy(update={"planner_mode": "deterministic"})
    return create_orchestrator(_create_store(), config=config, provider=provider, registry=registry)


def _scope(account_ids: list[int] | None) -> AccountScope | None:
    if account_ids is None:
        return None
    return AccountScope.of(*account_ids) if account_ids else AccountScope.all()


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    session_id: str | None = None
    account_ids: list[int] | None = Field(
        default=None,
        description="Restrict the analysis to these accounts; [] selects all, omit to keep the session scope.",
    )


class ToolExecuteRequest(BaseModel):
    params: dict[str, Any] = Field(default_factory=dict)
    account_ids: list[int] | None = None


class CacheInvalidateRequest(BaseModel):
    pattern: str = Field(min_length=1)


app = FastAPI(title="Infrastructure Analyst", version="0.1.0")

_orchestrator = _build_orchestrator()


@app.get("/health")
def health() -> dict[str, Any]:
    config = _orchestrator.config
    return {
        "status": "ok",
        "planner_mode": config.planner_mode,
        "response_mode": config.response_mode,
        "tools": len(_orchestrator.registry.names()),
        "sessions": len(_orchestrator.sessions.ids()),
        "trace_count": len(_orchestrator.trace_store.list_recent(limit=1000)),
    }


@app.post("/chat")
def chat(request: ChatRequest) -> dict[str, Any]:
    session_id = request.session_id or str(uuid.uuid4())
    try:
        result = _orchestrator.process_turn(session_id, request.message, _scope(request.account_ids))
    except TurnFailedError as exc:
        raise HTTPException(status_code=503, detail=exc.message) from exc

    return {
        "session_id": session_id,
        "answer": result.answer,
        "findings": [asdict(insight) for insight in result.findings],
        "visualizations": [asdict(chart) for chart in result.visualizations],
        "tools_used": [
            {
                "tool": r.tool_name,
                "ok": r.ok,
                "error": r.error,
                "cache_hit": r.cache_hit,
                "duration_ms": r.duration_ms,
            }
            for r in result.tool_results
        ],
        "cycles": result.cycles,
        "forced_finish": result.forced_finish,
        "trace_id": result.trace_id,
    }


@app.get("/sessions/{session_id}")
def session_detail(session_id: str) -> dict[str, Any]:
    try:
        state = _orchestrator.sessions.get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}") from exc
    collected = state.collected
    return {
        "session_id": state.session_id,
        "account_ids": state.scope.as_param(),
        "messages": [asdict(message) for message in state.messages],
        "collected": {
            "resources": len(collected.resources),
            "costs": len(collected.costs),
            "accounts": len(collected.accounts),
            "alerts": len(collected.alerts),
            "tool_errors": dict(collected.tool_errors),
        },
    }


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str) -> dict[str, Any]:
    return {"session_id": session_id, "deleted": _orchestrator.sessions.discard(session_id)}


@app.get("/tools")
def tools() -> dict[str, Any]:
    return {"items": _orchestrator.registry.describe()}


@app.post("/tools/{name}/execute")
def execute_tool(name: str, request: ToolExecuteRequest) -> dict[str, Any]:
    try:
        result = _orchestrator.graph.executor.run_one(
            ToolCall(name=name, params=request.params),
            _scope(request.account_ids) or AccountScope.all(),
        )
    except DataStoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=exc.message) from exc
    if result.error_kind == "not_found":
        raise HTTPException(status_code=404, detail=result.error)
    if result.error_kind == "validation":
        raise HTTPException(status_code=422, detail=result.error)
    return asdict(result)


@app.get("/cache/stats")
def cache_stats() -> dict[str, Any]:
    return _orchestrator.cache.stats()


@app.post("/cache/invalidate")
def cache_invalidate(request: CacheInvalidateRequest) -> dict[str, Any]:
    return {"removed": _orchestrator.cache.invalidate(request.pattern)}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _orchestrator.trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _orchestrator.trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _orchestrator.trace_store.summary(
        target_latency_ms=_orchestrator.config.target_latency_seconds * 1000.0
    )
