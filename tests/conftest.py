"""pytest configuration and fixtures for event_discovery tests.

This module provides shared fixtures for testing the discovery engine,
including the EventBridge, a recording transport that can be told to
fail, a fast engine configuration and a manual clock.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from typing import TYPE_CHECKING, Any

import pytest

from event_discovery import DiscoveryEngine

if TYPE_CHECKING:
    from event_discovery import DiscoveryConfig, EventBridge


class FastDiscoveryEngine(DiscoveryEngine):
    """Engine whose timer ticks every millisecond."""

    POLL_INTERVAL_MS = 1


class FlakyConsumer:
    """Transport double that records subscribe calls.

    Attributes:
        calls: Event types of every subscribe attempt, in order.
        subscriptions: (event_type, handler, options) of successful subscribes.
        fail_times: Event type -> number of upcoming attempts that must fail.
        fail_always: Event types whose subscribe always fails.
        delay: Seconds each subscribe waits before completing.
    """

    def __init__(
        self,
        fail_times: dict[str, int] | None = None,
        fail_always: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fail_times = dict(fail_times or {})
        self.fail_always = set(fail_always or ())
        self.delay = delay
        self.calls: list[str] = []
        self.subscriptions: list[tuple[str, Any, dict[str, Any] | None]] = []

    async def subscribe(self, event_type, handler, options=None):
        self.calls.append(event_type)
        if self.delay:
            await asyncio.sleep(self.delay)
        if event_type in self.fail_always:
            raise RuntimeError(f"transport rejected {event_type}")
        remaining = self.fail_times.get(event_type, 0)
        if remaining > 0:
            self.fail_times[event_type] = remaining - 1
            raise RuntimeError(f"transport unavailable for {event_type}")
        self.subscriptions.append((event_type, handler, options))

    @property
    def subscribed_types(self) -> list[str]:
        return [event_type for event_type, _, _ in self.subscriptions]

    def count_with_prefix(self, prefix: str) -> int:
        return sum(1 for t in self.subscribed_types if t.startswith(prefix))


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def event_discovery_module():
    """Provide the event_discovery module as a fixture."""
    import event_discovery

    return event_discovery


@pytest.fixture
def event_bridge() -> Generator[EventBridge, None, None]:
    """Provide a fresh EventBridge for each test.

    The bridge is automatically started and cleaned up after the test.
    """
    from event_discovery import EventBridge

    EventBridge.reset_instance()
    bridge = EventBridge.instance()
    bridge.start()
    yield bridge
    bridge.stop()
    EventBridge.reset_instance()


@pytest.fixture
def flaky_consumer() -> FlakyConsumer:
    """Provide a recording transport that succeeds unless configured to fail."""
    return FlakyConsumer()


@pytest.fixture
def fast_config() -> DiscoveryConfig:
    """Provide a configuration with millisecond timers for quick tests."""
    from event_discovery import DiscoveryConfig

    return DiscoveryConfig(base_delay_ms=1, max_retries=5)


@pytest.fixture
def engine(
    fast_config: DiscoveryConfig, event_bridge: EventBridge
) -> Generator[DiscoveryEngine, None, None]:
    """Provide a FastDiscoveryEngine with no consumer attached.

    Async tests that let the timer run should ``await engine.shutdown()``
    before returning.
    """
    engine = FastDiscoveryEngine(config=fast_config, bridge=event_bridge)
    yield engine
    engine.close()


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


# Markers for test categorization
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "slow: marks tests as slow running",
    )
