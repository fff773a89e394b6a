"""LLM provider interface and the LangChain-backed adapter."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from infra_analyst.agent.registry import ToolRegistry, ToolSpec
from infra_analyst.config import AgentConfig
from infra_analyst.errors import ProviderError
from infra_analyst.types import ToolCall

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "timeout",
    "ratelimit",
    "connection",
    "serviceunavailable",
    "internalserver",
    "throttl",
    "overloaded",
)


@dataclass(slots=True)
class Completion:
    """Provider reply: free text plus zero or more requested tool calls."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class LLMProvider(Protocol):
    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> Completion:
        """Return the next assistant turn for `messages`.

        Raises `ProviderError` once the provider's retry budget is exhausted.
        """


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.transient
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    name = type(exc).__name__.lower()
    return any(marker in name for marker in _TRANSIENT_MARKERS)


class LangChainProvider:
    """Adapts any LangChain chat model to `LLMProvider`.

    Transient failures are retried with exponential backoff; anything else is
    surfaced immediately as a non-transient `ProviderError`.
    """

    def __init__(
        self,
        model: Any,
        *,
        registry: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        backoff_seconds: float = 0.5,
    ) -> None:
        self.model = model
        self.registry = registry
        self.config = config or AgentConfig()
        self._backoff_seconds = backoff_seconds
        self._bound: dict[tuple[str, ...], Any] = {}

    def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> Completion:
        runnable = self._runnable_for(tools)
        lc_messages = to_langchain_messages(messages)
        retrying = Retrying(
            stop=stop_after_attempt(self.config.provider_max_retries),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=8),
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        try:
            reply = retrying(runnable.invoke, lc_messages)
        except ProviderError:
            raise
        except Exception as exc:
            logger.warning("LLM provider call failed: %s", exc)
            raise ProviderError(
                f"LLM provider failed: {type(exc).__name__}: {exc}",
                transient=is_transient(exc),
            ) from exc
        return from_langchain_message(reply)

    def _runnable_for(self, tools: list[ToolSpec] | None) -> Any:
        if not tools:
            return self.model
        key = tuple(sorted(spec.name for spec in tools))
        if key not in self._bound:
            if self.registry is None:
                raise ProviderError("Tool binding requires a registry", transient=False)
            lc_tools = [t for t in self.registry.as_langchain_tools() if t.name in key]
            self._bound[key] = self.model.bind_tools(lc_tools)
        return self._bound[key]


def to_langchain_messages(messages: list[dict[str, Any]]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for message in messages:
        role = message.get("role")
        content = message.get("content") or ""
        if role == "system":
            converted.append(SystemMessage(content=content))
        elif role == "user":
            converted.append(HumanMessage(content=content))
        elif role == "assistant":
            calls = [
                {"name": call.name, "args": call.params, "id": call.call_id or f"call_{i}"}
                for i, call in enumerate(message.get("tool_calls") or [])
            ]
            converted.append(AIMessage(content=content, tool_calls=calls))
        elif role == "tool":
            converted.append(
                ToolMessage(content=content, tool_call_id=message.get("tool_call_id") or "unknown")
            )
        else:
            raise ValueError(f"Unsupported message role: {role}")
    return converted


def from_langchain_message(reply: Any) -> Completion:
    content = getattr(reply, "content", reply)
    if isinstance(content, list):
        parts = [
            str(item["text"]) if isinstance(item, dict) and "text" in item else str(item)
            for item in content
            if not (isinstance(item, dict) and item.get("type") == "tool_use")
        ]
        content = " ".join(parts).strip()
    calls = [
        ToolCall(name=str(call["name"]), params=dict(call.get("args") or {}), call_id=call.get("id"))
        for call in getattr(reply, "tool_calls", None) or []
    ]
    return Completion(content=str(content or ""), tool_calls=calls)


def tool_result_message(call: ToolCall, payload: Any) -> dict[str, Any]:
    """Render a tool outcome as a `tool` role message for the next reasoning cycle."""
    body = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    return {"role": "tool", "content": body[:4000], "tool_call_id": call.call_id or call.name}


def create_chat_model(model_name: str, config: AgentConfig) -> Any:
    """Build the default OpenAI chat model; retries are handled by the adapter."""
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model_name,
        temperature=0,
        timeout=config.provider_timeout_seconds,
        max_retries=0,
    )
