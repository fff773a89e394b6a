"""Configuration models for the analysis engine."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class AgentConfig(BaseModel):
    """Configures planning strategy, cycle caps, and provider/tool timeouts."""

    planner_mode: Literal["deterministic", "delegated"] = "deterministic"
    response_mode: Literal["template", "llm"] = "template"
    max_cycles: int = Field(default=8, ge=1)
    tool_timeout_seconds: float = Field(default=20.0, gt=0.0)
    max_parallel_tools: int = Field(default=5, ge=1)
    provider_timeout_seconds: float = Field(default=30.0, gt=0.0)
    provider_max_retries: int = Field(default=3, ge=1)
    target_latency_seconds: float = Field(default=8.0, gt=0.0)


class CacheConfig(BaseModel):
    """Configures the shared tool-result cache."""

    capacity: int = Field(default=1000, ge=1)
    default_ttl_seconds: float = Field(default=300.0, gt=0.0)


class InsightThresholds(BaseModel):
    """Rule thresholds used by the insight synthesizer."""

    cost_critical: float = Field(default=20000.0, ge=0.0)
    cost_warning: float = Field(default=10000.0, ge=0.0)
    dominant_share: float = Field(default=0.30, ge=0.0, le=1.0)
    idle_age_high_days: int = Field(default=90, ge=1)
    idle_age_medium_days: int = Field(default=30, ge=1)
    idle_savings_critical: float = Field(default=500.0, ge=0.0)
    idle_savings_warning: float = Field(default=50.0, ge=0.0)
    trend_threshold_pct: float = Field(default=5.0, ge=0.0)
    evidence_limit: int = Field(default=5, ge=1)
