"""Performance monitoring for the discovery engine.

Combines metadata cache statistics, engine statistics and batch
processing times into a single metrics snapshot, and reports on it
periodically.

Example:
    >>> monitor = PerformanceMonitor(engine=engine)
    >>> monitor.start_reporting(interval_s=300)
    >>> print(monitor.get_performance_summary())
    >>> await monitor.stop_reporting()
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque

from .engine import DiscoveryEngine
from .event_bridge import EventBridge, EventNames
from .explorer import MetadataExplorer
from .logging import log_debug, log_info, log_warn
from .types import PerformanceMetrics, TimingMetrics

MAX_SAMPLES = 100

LOW_HIT_RATE_PERCENT = 50.0

SLOW_PROCESSING_MS = 1000.0

HIGH_RETRY_COUNT = 10

DEFAULT_REPORT_INTERVAL_S = 300.0


class PerformanceMonitor:
    """Collects discovery performance metrics.

    Processing times are taken from ``batch.processed`` events on the
    bridge; only the most recent ``MAX_SAMPLES`` are kept.

    Attributes:
        explorer: Explorer whose cache statistics are reported.
        engine: Engine whose queue statistics are reported.
    """

    def __init__(
        self,
        explorer: MetadataExplorer | None = None,
        engine: DiscoveryEngine | None = None,
        bridge: EventBridge | None = None,
    ) -> None:
        self.engine = engine or DiscoveryEngine.instance()
        self.explorer = explorer or self.engine.explorer
        self._bridge = bridge or EventBridge.instance()
        self._samples: deque[float] = deque(maxlen=MAX_SAMPLES)
        self._last_run: float | None = None
        self._started_at = time.monotonic()
        self._reporter: asyncio.Task[None] | None = None

        self._bridge.subscribe(EventNames.BATCH_PROCESSED, self._on_batch_processed)

    def close(self) -> None:
        """Detach from the bridge (no-op if the bridge already dropped us)."""
        with contextlib.suppress(KeyError):
            self._bridge.unsubscribe(EventNames.BATCH_PROCESSED, self._on_batch_processed)

    def record_processing_time(self, duration_ms: float) -> None:
        self._samples.append(float(duration_ms))
        self._last_run = time.time()

    def get_metrics(self) -> PerformanceMetrics:
        average = sum(self._samples) / len(self._samples) if self._samples else 0.0
        return PerformanceMetrics(
            cache=self.explorer.get_cache_stats(),
            discovery=self.engine.get_stats(),
            timing=TimingMetrics(
                last_discovery_run=self._last_run,
                average_processing_time_ms=round(average, 2),
                total_runs=len(self._samples),
            ),
        )

    def get_performance_summary(self) -> str:
        metrics = self.get_metrics()
        uptime = round(time.monotonic() - self._started_at)
        cache = metrics.cache
        discovery = metrics.discovery
        timing = metrics.timing
        return (
            f"Performance Summary (uptime: {uptime}s):\n"
            f"  Cache: {cache.hit_rate}% hit rate ({cache.hits}/{cache.hits + cache.misses})\n"
            f"  Discovery: {discovery.registered} registered, {discovery.pending} pending, "
            f"{discovery.retry_count} retries, {discovery.abandoned} abandoned\n"
            f"  Processing: {timing.average_processing_time_ms}ms average ({timing.total_runs} runs)"
        )

    def check_performance_warnings(self) -> list[str]:
        """Log and publish a warning for each threshold that is crossed.

        The hit-rate check only applies once the cache has served at
        least one lookup.
        """
        metrics = self.get_metrics()
        warnings: list[str] = []

        if self._cache_used(metrics) and metrics.cache.hit_rate < LOW_HIT_RATE_PERCENT:
            warnings.append(
                f"Low cache hit rate: {metrics.cache.hit_rate}%. "
                "Consider pre-warming cache for frequently accessed services."
            )
        if metrics.timing.average_processing_time_ms > SLOW_PROCESSING_MS:
            warnings.append(
                f"Slow discovery processing: {metrics.timing.average_processing_time_ms}ms average. "
                "Consider optimizing service registration."
            )
        if metrics.discovery.retry_count > HIGH_RETRY_COUNT:
            warnings.append(
                f"High retry count: {metrics.discovery.retry_count}. "
                "Check for service registration issues."
            )

        for warning in warnings:
            log_warn(warning)
            self._bridge.publish(EventNames.MONITOR_WARNING, warning)
        return warnings

    def get_recommendations(self) -> list[str]:
        metrics = self.get_metrics()
        recommendations: list[str] = []

        if self._cache_used(metrics) and metrics.cache.hit_rate < LOW_HIT_RATE_PERCENT:
            recommendations.append("Consider pre-warming cache for frequently accessed services")
        if metrics.timing.average_processing_time_ms > SLOW_PROCESSING_MS:
            recommendations.append("Consider optimizing service registration with batching")
        if metrics.discovery.retry_count > HIGH_RETRY_COUNT:
            recommendations.append("Investigate service registration failures and retry logic")
        if metrics.discovery.abandoned:
            recommendations.append(
                f"{metrics.discovery.abandoned} services were abandoned; "
                "check that the transport accepts their subscriptions"
            )

        if not recommendations:
            recommendations.append("Performance is within acceptable ranges")
        return recommendations

    def reset_metrics(self) -> None:
        self._samples.clear()
        self._last_run = None
        log_info("Performance metrics reset")

    def start_reporting(self, interval_s: float = DEFAULT_REPORT_INTERVAL_S) -> asyncio.Task[None]:
        """Log the summary and check warnings every ``interval_s`` seconds.

        Must be called from a running event loop. Calling it again while
        reporting is active returns the existing task.
        """
        if self._reporter is not None and not self._reporter.done():
            return self._reporter
        self._reporter = asyncio.get_running_loop().create_task(
            self._report_loop(interval_s), name="event-discovery-monitor"
        )
        log_debug("PerformanceMonitor: Reporting started", {"interval_s": interval_s})
        return self._reporter

    async def stop_reporting(self) -> None:
        reporter, self._reporter = self._reporter, None
        if reporter is None:
            return
        reporter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reporter
        log_debug("PerformanceMonitor: Reporting stopped")

    @property
    def is_reporting(self) -> bool:
        return self._reporter is not None and not self._reporter.done()

    async def _report_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            log_info(self.get_performance_summary())
            self.check_performance_warnings()

    def _on_batch_processed(self, batch_size: int, duration_ms: float) -> None:
        self.record_processing_time(duration_ms)

    @staticmethod
    def _cache_used(metrics: PerformanceMetrics) -> bool:
        return metrics.cache.hits + metrics.cache.misses > 0


__all__ = [
    "HIGH_RETRY_COUNT",
    "LOW_HIT_RATE_PERCENT",
    "MAX_SAMPLES",
    "SLOW_PROCESSING_MS",
    "PerformanceMonitor",
]
