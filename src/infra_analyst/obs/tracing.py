"""Per-turn tracing and aggregate metrics."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from infra_analyst.types import Phase, ToolExecutionResult


@dataclass(slots=True)
class TurnTrace:
    trace_id: str
    timestamp_utc: str
    session_id: str
    query: str
    answer: str
    intent: str | None
    phases: list[Phase]
    tool_results: list[ToolExecutionResult]
    cycles: int
    forced_finish: bool
    insight_count: int
    latency_ms: float
    status: str = "ok"
    error: str | None = None
    response_mode: str = "template"
    cache_hits: int = field(init=False)
    tool_errors: int = field(init=False)

    def __post_init__(self) -> None:
        self.cache_hits = sum(1 for r in self.tool_results if r.cache_hit)
        self.tool_errors = sum(1 for r in self.tool_results if not r.ok)


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps the most recent `capacity` traces; older ones are dropped first.
    """

    def __init__(self, *, capacity: int = 500) -> None:
        self._records: dict[str, TurnTrace] = {}
        self._capacity = capacity
        self._tool_stats: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        session_id: str,
        query: str,
        answer: str,
        tool_results: list[ToolExecutionResult],
        latency_ms: float,
        intent: str | None = None,
        phases: list[Phase] | None = None,
        cycles: int = 0,
        forced_finish: bool = False,
        insight_count: int = 0,
        status: str = "ok",
        error: str | None = None,
        response_mode: str = "template",
    ) -> TurnTrace:
        record = TurnTrace(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            query=query,
            answer=answer,
            intent=intent,
            phases=list(phases or []),
            tool_results=list(tool_results),
            cycles=cycles,
            forced_finish=forced_finish,
            insight_count=insight_count,
            latency_ms=latency_ms,
            status=status,
            error=error,
            response_mode=response_mode,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._capacity:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TurnTrace:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnTrace]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def record_tool(self, result: ToolExecutionResult) -> None:
        """Registry observer: accumulate per-tool call, error and latency counts."""
        with self._lock:
            stats = self._tool_stats.setdefault(
                result.tool_name,
                {"calls": 0, "errors": 0, "cache_hits": 0, "total_ms": 0.0},
            )
            stats["calls"] += 1
            stats["errors"] += 0 if result.ok else 1
            stats["cache_hits"] += 1 if result.cache_hit else 0
            stats["total_ms"] += result.duration_ms

    def tool_stats(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            snapshot = {name: dict(stats) for name, stats in self._tool_stats.items()}
        return {
            name: {
                "calls": stats["calls"],
                "errors": stats["errors"],
                "cache_hits": stats["cache_hits"],
                "avg_latency_ms": stats["total_ms"] / stats["calls"],
            }
            for name, stats in sorted(snapshot.items())
        }

    def summary(self, *, target_latency_ms: float | None = None) -> dict[str, Any]:
        """Aggregate core observability metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_tool_calls": 0.0,
                "cache_hit_ratio": 0.0,
                "tool_error_count": 0,
                "forced_finishes": 0,
                "latency_target_met_ratio": 0.0,
                "tools": self.tool_stats(),
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        tool_calls = sum(len(record.tool_results) for record in records)
        cache_hits = sum(record.cache_hits for record in records)
        within_target = (
            sum(1 for latency in latencies if latency <= target_latency_ms)
            if target_latency_ms is not None
            else total
        )

        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.status != "ok"),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_tool_calls": tool_calls / total,
            "cache_hit_ratio": (cache_hits / tool_calls) if tool_calls else 0.0,
            "tool_error_count": sum(record.tool_errors for record in records),
            "forced_finishes": sum(1 for record in records if record.forced_finish),
            "latency_target_met_ratio": within_target / total,
            "tools": self.tool_stats(),
        }


class Timer:
    """Simple context timer used by the orchestrator."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
