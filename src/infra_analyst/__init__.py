"""Infrastructure analysis orchestration engine."""

from .config import AgentConfig, CacheConfig, InsightThresholds
from .types import AccountScope, ConversationState, TurnResult

__all__ = [
    "AccountScope",
    "AgentConfig",
    "CacheConfig",
    "ConversationState",
    "InsightThresholds",
    "TurnResult",
]
