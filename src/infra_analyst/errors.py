"""Exception hierarchy for the analysis engine.

Only `DataStoreUnavailableError` and an exhausted `ProviderError` are fatal to a
turn; everything raised inside a single tool is converted into a
`ToolExecutionResult` by the executor.
"""

from __future__ import annotations

from typing import Any


class AnalystError(Exception):
    """Base class for all engine errors."""

    code = "ANALYST_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ToolValidationError(AnalystError):
    """Tool parameters failed schema validation. Never retried."""

    code = "VALIDATION_ERROR"

    def __init__(self, tool_name: str, errors: list[dict[str, Any]]) -> None:
        summary = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ())) or '<root>'}: {err.get('msg', '')}"
            for err in errors
        )
        super().__init__(
            f"Invalid parameters for {tool_name}: {summary}",
            details={"tool": tool_name, "errors": errors},
        )
        self.tool_name = tool_name
        self.errors = errors


class ToolNotFoundError(AnalystError, KeyError):
    code = "TOOL_NOT_FOUND"

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}", details={"tool": tool_name})
        self.tool_name = tool_name

    def __str__(self) -> str:
        return self.message


class ToolExecutionError(AnalystError):
    """A tool body raised while reading the data store."""

    code = "TOOL_EXECUTION_ERROR"

    def __init__(self, tool_name: str, cause: BaseException | str) -> None:
        reason = cause if isinstance(cause, str) else f"{type(cause).__name__}: {cause}"
        super().__init__(f"Tool {tool_name} failed: {reason}", details={"tool": tool_name})
        self.tool_name = tool_name


class ProviderError(AnalystError):
    """The LLM provider call failed or timed out."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, transient: bool = True) -> None:
        super().__init__(message, details={"transient": transient})
        self.transient = transient


class PlanningExhaustedError(AnalystError):
    """The delegated planner reached its cycle cap."""

    code = "PLANNING_EXHAUSTED"

    def __init__(self, cycles: int) -> None:
        super().__init__(
            f"Planning stopped after {cycles} cycles", details={"cycles": cycles}
        )
        self.cycles = cycles


class DataStoreUnavailableError(AnalystError):
    """The data store could not be reached after its own retries."""

    code = "DATA_STORE_UNAVAILABLE"


class TurnFailedError(AnalystError):
    """User-visible failure of a whole turn."""

    code = "TURN_FAILED"


class InvalidTransitionError(AnalystError):
    """The analysis graph was asked to move between unconnected phases."""

    code = "INVALID_TRANSITION"
