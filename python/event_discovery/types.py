"""Pydantic models for the event discovery engine.

This module provides the data model shared by the explorer, the
registration executor and the engine, using Pydantic v2 for
validation and serialization.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EngineState(str, Enum):
    """Discovery engine scheduling states."""

    IDLE = "idle"
    """No pending work and no timer running."""

    SCHEDULED = "scheduled"
    """Timer armed, waiting for the next tick."""

    PROCESSING = "processing"
    """A batch is actively being registered."""


class RetryPolicy(BaseModel):
    """Per-handler retry hint declared alongside a tagged method.

    Passed through to the transport in the subscribe options; the
    discovery engine's own retry loop is governed by RetryTracker.
    """

    max_attempts: int = Field(default=3, ge=1, description="Maximum delivery attempts.")
    backoff_ms: int = Field(default=1000, ge=0, description="Delay between attempts.")

    model_config = {"frozen": True, "extra": "forbid"}


class HandlerMetadata(BaseModel):
    """Metadata attached to a tagged method.

    Example:
        >>> meta = HandlerMetadata(event_type="user.created", priority=5)
        >>> meta.is_async
        True
    """

    event_type: str = Field(min_length=1, description="Event type to subscribe to.")
    priority: int = Field(default=0, description="Higher values subscribe first.")
    is_async: bool = Field(default=True, description="Whether the method is a coroutine.")
    retry_policy: RetryPolicy | None = Field(
        default=None,
        description="Optional transport-level retry hint.",
    )

    model_config = {"frozen": True, "extra": "forbid"}

    def subscribe_options(self) -> dict[str, Any]:
        """Build the options dict passed to ``Consumer.subscribe``."""
        return {
            "priority": self.priority,
            "retry": self.retry_policy.model_dump() if self.retry_policy else None,
        }


class HandlerEntry(BaseModel):
    """A (method name, metadata) pair produced by exploring an instance."""

    method_name: str
    metadata: HandlerMetadata

    model_config = {"frozen": True}

    @property
    def event_type(self) -> str:
        return self.metadata.event_type


class RegisteredHandler(BaseModel):
    """A tagged method the executor has subscribed with the transport."""

    event_type: str = Field(description="Event type the handler is subscribed to.")
    instance_key: str = Field(description="Identity key of the owning instance.")
    method_name: str = Field(description="Name of the tagged method.")
    priority: int = Field(default=0, description="Priority passed to subscribe.")
    handler: Callable[[Any], Any] = Field(
        exclude=True,
        description="Wrapped callback handed to the transport.",
    )

    model_config = {"frozen": True}


class CacheStats(BaseModel):
    """Metadata explorer cache statistics.

    ``hit_rate`` is a percentage in [0, 100].
    """

    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0


class DiscoveryStats(BaseModel):
    """Snapshot of the discovery engine for health endpoints.

    Example:
        >>> stats = engine.get_stats()
        >>> if stats.retry_count > 0:
        ...     print(f"{stats.pending} pending, {stats.retry_count} retries outstanding")
    """

    pending: int = Field(default=0, description="Instances waiting in the queue.")
    registered: int = Field(default=0, description="Instances fully registered.")
    retry_count: int = Field(
        default=0,
        description="Sum of outstanding failed attempts across instances.",
    )
    scheduled_retries: int = Field(
        default=0,
        description="Instances waiting out a backoff delay before re-enqueue.",
    )
    abandoned: int = Field(
        default=0,
        description="Instances dropped after exhausting retries.",
    )
    state: EngineState = Field(default=EngineState.IDLE)


class TimingMetrics(BaseModel):
    """Processing time statistics gathered by the performance monitor."""

    last_discovery_run: float | None = Field(
        default=None,
        description="Wall-clock timestamp of the last processed batch.",
    )
    average_processing_time_ms: float = 0.0
    total_runs: int = 0


class PerformanceMetrics(BaseModel):
    """Combined cache, discovery and timing metrics."""

    cache: CacheStats
    discovery: DiscoveryStats
    timing: TimingMetrics


class LogContext(BaseModel):
    """Context fields for structured logging.

    Example:
        >>> context = LogContext(instance_key="svc@0x1", event_type="user.created")
        >>> log_info("Handler subscribed", context)
    """

    instance_key: str | None = Field(default=None, description="Instance identity key.")
    service: str | None = Field(default=None, description="Instance class name.")
    method_name: str | None = Field(default=None, description="Tagged method name.")
    event_type: str | None = Field(default=None, description="Event type.")
    attempt: int | None = Field(default=None, description="Registration attempt number.")
    correlation_id: str | None = Field(default=None, description="Correlation ID.")


__all__ = [
    "EngineState",
    "RetryPolicy",
    "HandlerMetadata",
    "HandlerEntry",
    "RegisteredHandler",
    "CacheStats",
    "DiscoveryStats",
    "TimingMetrics",
    "PerformanceMetrics",
    "LogContext",
]
