"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from infra_analyst.errors import (
    AnalystError,
    DataStoreUnavailableError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolValidationError,
)
from infra_analyst.types import ToolExecutionResult

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], Any]
    tags: list[str] = Field(default_factory=list)
    cache_ttl_seconds: float | None = Field(default=None, gt=0.0)

    def validate_params(self, payload: dict[str, Any]) -> BaseModel:
        try:
            return self.args_schema.model_validate(payload)
        except PydanticValidationError as exc:
            raise ToolValidationError(
                self.name, exc.errors(include_url=False, include_context=False)
            ) from exc

    def invoke(self, payload: dict[str, Any]) -> Any:
        data = self.validate_params(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._frozen = False
        self._observer: Callable[[ToolExecutionResult], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if self._frozen:
            raise RuntimeError(f"Registry is frozen; cannot register {spec.name}")
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def freeze(self) -> None:
        """Reject further registrations. Called once startup wiring is done."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise ToolNotFoundError(name)
        return spec

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def list(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def set_observer(self, observer: Callable[[ToolExecutionResult], None] | None) -> None:
        """Set an optional callback that receives every `ToolExecutionResult`."""
        self._observer = observer

    def notify(self, result: ToolExecutionResult) -> ToolExecutionResult:
        """Hand `result` to the observer, if any, and return it unchanged."""
        if self._observer is not None:
            self._observer(result)
        return result

    def execute(self, name: str, payload: dict[str, Any]) -> Any:
        """Validate and run a tool.

        Raises `ToolValidationError` for bad parameters and `ToolExecutionError`
        for failures inside the tool body. `DataStoreUnavailableError` is
        propagated untouched because it is fatal to the whole turn.
        """
        return self._execute_spec(self.lookup(name), payload)

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def describe(self) -> list[dict[str, Any]]:
        """Tool catalog used to advertise capabilities to planners and the API."""
        return [
            {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.args_schema.model_json_schema(),
                "tags": list(spec.tags),
                "cache_ttl_seconds": spec.cache_ttl_seconds,
            }
            for spec in self._tools.values()
        ]

    def _build_function(self, spec: ToolSpec) -> Callable[..., Any]:
        def _callable(**kwargs: Any) -> Any:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> Any:
        data = spec.validate_params(payload)
        try:
            return spec.handler(data)
        except (DataStoreUnavailableError, ToolExecutionError):
            raise
        except AnalystError as exc:
            raise ToolExecutionError(spec.name, exc.message) from exc
        except Exception as exc:
            logger.warning("Tool %s raised %s", spec.name, exc)
            raise ToolExecutionError(spec.name, exc) from exc
