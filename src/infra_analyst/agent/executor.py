"""Runs batches of tool calls with caching, timeouts and failure isolation."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from time import monotonic, perf_counter
from typing import Any

from infra_analyst.agent.cache import ToolCache, make_cache_key
from infra_analyst.agent.registry import ToolRegistry, ToolSpec
from infra_analyst.config import AgentConfig
from infra_analyst.errors import (
    DataStoreUnavailableError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from infra_analyst.types import AccountScope, CollectedData, ToolCall, ToolExecutionResult

logger = logging.getLogger(__name__)

COLLECTION_KEYS = ("resources", "costs", "accounts", "alerts")


class ToolExecutor:
    """Executes the tool calls requested in one step.

    Calls within a batch run concurrently and never block one another. Each
    failure is turned into a `ToolExecutionResult` carrying the error, except
    `DataStoreUnavailableError`, which is fatal to the turn and re-raised once
    the batch has settled.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        cache: ToolCache | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.registry = registry
        self.cache = cache
        self.config = config or AgentConfig()

    def run_batch(self, calls: list[ToolCall], scope: AccountScope) -> list[ToolExecutionResult]:
        if not calls:
            return []
        pool = ThreadPoolExecutor(
            max_workers=min(self.config.max_parallel_tools, len(calls)),
            thread_name_prefix="tool",
        )
        try:
            futures: list[tuple[ToolCall, Future[ToolExecutionResult]]] = [
                (call, pool.submit(self._run, call, scope)) for call in calls
            ]
            deadline = monotonic() + self.config.tool_timeout_seconds
            results: list[ToolExecutionResult] = []
            fatal: DataStoreUnavailableError | None = None
            for call, future in futures:
                try:
                    result = future.result(timeout=max(0.0, deadline - monotonic()))
                    results.append(self.registry.notify(result))
                except FutureTimeoutError:
                    timeout = self.config.tool_timeout_seconds
                    logger.warning("Tool %s timed out after %.1fs", call.name, timeout)
                    timed_out = ToolExecutionResult(
                        tool_name=call.name,
                        params=dict(call.params),
                        error=f"Tool {call.name} timed out after {timeout:.0f}s",
                        error_kind="timeout",
                        duration_ms=timeout * 1000.0,
                    )
                    results.append(self.registry.notify(timed_out))
                except DataStoreUnavailableError as exc:
                    fatal = fatal or exc
            if fatal is not None:
                raise fatal
            return results
        finally:
            # Timed-out calls keep running in the background; their results are dropped.
            pool.shutdown(wait=False, cancel_futures=True)

    def run_one(self, call: ToolCall, scope: AccountScope) -> ToolExecutionResult:
        """Run a single call outside a batch, reporting it to the registry observer."""
        return self.registry.notify(self._run(call, scope))

    def _run(self, call: ToolCall, scope: AccountScope) -> ToolExecutionResult:
        # Every outcome except a data-store outage becomes a result. Parameters are
        # validated before the scope narrows `account_ids`.
        start = perf_counter()
        params: dict[str, Any] = dict(call.params)
        try:
            spec = self.registry.lookup(call.name)
            normalized = spec.validate_params(params).model_dump(mode="json")
            params = scoped_params(spec, normalized, scope)
            output, cache_hit = self._execute(spec, params)
        except ToolValidationError as exc:
            return self._failure(call.name, params, exc.message, "validation", start)
        except ToolNotFoundError as exc:
            return self._failure(call.name, params, exc.message, "not_found", start)
        except ToolExecutionError as exc:
            logger.warning("Tool %s failed: %s", call.name, exc.message)
            return self._failure(call.name, params, exc.message, "execution", start)
        except DataStoreUnavailableError:
            raise
        except Exception as exc:
            logger.exception("Tool %s failed unexpectedly", call.name)
            return self._failure(call.name, params, f"Tool {call.name} failed: {exc}", "execution", start)
        if cache_hit:
            logger.debug("cache hit tool=%s", call.name)
        return ToolExecutionResult(
            tool_name=call.name,
            params=params,
            output=output,
            duration_ms=(perf_counter() - start) * 1000.0,
            cache_hit=cache_hit,
        )

    def _execute(self, spec: ToolSpec, params: dict[str, Any]) -> tuple[Any, bool]:
        if self.cache is None:
            return self.registry.execute(spec.name, params), False
        key = make_cache_key(spec.name, params)
        return self.cache.get_or_set(
            key,
            lambda: self.registry.execute(spec.name, params),
            spec.cache_ttl_seconds,
        )

    def _failure(
        self, name: str, params: dict[str, Any], message: str, kind: str, start: float
    ) -> ToolExecutionResult:
        return ToolExecutionResult(
            tool_name=name,
            params=params,
            error=message,
            error_kind=kind,
            duration_ms=(perf_counter() - start) * 1000.0,
        )


def scoped_params(spec: ToolSpec, params: dict[str, Any], scope: AccountScope) -> dict[str, Any]:
    """Restrict `account_ids` to the session scope for tools that accept it."""
    if "account_ids" not in spec.args_schema.model_fields or scope.is_all:
        return params
    allowed = list(scope.account_ids or ())
    requested = params.get("account_ids")
    if requested is None:
        return {**params, "account_ids": allowed}
    narrowed = [i for i in requested if i in allowed]
    return {**params, "account_ids": narrowed or allowed}


def collected_from_results(results: list[ToolExecutionResult]) -> CollectedData:
    """Fold tool outputs into a `CollectedData` delta.

    List payloads under the well-known collection keys feed the typed
    collections; every other field of a successful output is kept under
    `statistics[tool_name]`; failures land in `tool_errors`.
    """
    data = CollectedData()
    for result in results:
        if not result.ok:
            data = data.merge(CollectedData(tool_errors={result.tool_name: result.error or "error"}))
            continue
        output = result.output
        if not isinstance(output, dict):
            data = data.merge(CollectedData(statistics={result.tool_name: output}))
            continue
        collections = {
            key: tuple(output[key]) for key in COLLECTION_KEYS if isinstance(output.get(key), list)
        }
        summary = {key: value for key, value in output.items() if key not in COLLECTION_KEYS}
        data = data.merge(CollectedData(statistics={result.tool_name: summary}, **collections))
    return data
