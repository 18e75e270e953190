"""Discovery engine tests.

These tests verify:
- Deferred registration when instances arrive before the transport
- Idempotent enqueue and at-most-once subscription per handler
- Per-instance failure isolation within a batch
- Exponential backoff and abandonment after the retry ceiling
- Mutual exclusion between the timer and forced drains
- Shutdown semantics
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import FastDiscoveryEngine, FlakyConsumer

from event_discovery import (
    DiscoveryConfig,
    DiscoveryEngine,
    EngineState,
    EventBridge,
    EventNames,
    InProcessConsumer,
    RetryExhaustedError,
    event_handler,
)


class ServiceA:
    @event_handler("a.created")
    async def on_created(self, event):
        pass

    @event_handler("a.updated")
    async def on_updated(self, event):
        pass


class ServiceB:
    def plain_method(self):
        return "not a handler"


class ServiceC:
    @event_handler("c.first")
    async def first(self, event):
        pass

    @event_handler("c.second")
    def second(self, event):
        pass

    @event_handler("c.third")
    async def third(self, event):
        pass


class RejectedService:
    @event_handler("rejected.event")
    async def on_event(self, event):
        pass


class TestDeferredRegistration:
    """Instances enqueued before the transport exists."""

    @pytest.mark.asyncio
    async def test_three_services_reach_steady_state(self, engine, flaky_consumer):
        """A and B register at once, C succeeds on its third attempt."""
        flaky_consumer.fail_times = {"c.first": 2}
        a, b, c = ServiceA(), ServiceB(), ServiceC()

        assert engine.enqueue(a)
        assert engine.enqueue(b)
        assert engine.enqueue(c)
        assert engine.get_stats().pending == 3

        engine.attach_consumer(flaky_consumer)
        await engine.trigger_registration()
        assert await engine.wait_until_idle(timeout=2.0)

        assert flaky_consumer.count_with_prefix("a.") == 2
        assert flaky_consumer.count_with_prefix("b.") == 0
        assert flaky_consumer.count_with_prefix("c.") == 3

        stats = engine.get_stats()
        assert stats.registered == 3
        assert stats.pending == 0
        assert stats.retry_count == 0

        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_single_handler_succeeds_on_third_subscribe(self, engine):
        """A has two handlers, B none, C one handler whose subscribe fails twice."""

        class SingleHandlerService:
            @event_handler("c.only")
            async def on_only(self, event):
                pass

        consumer = FlakyConsumer(fail_times={"c.only": 2})
        engine.enqueue_many([ServiceA(), ServiceB(), SingleHandlerService()])

        engine.attach_consumer(consumer)
        await engine.trigger_registration()
        assert await engine.wait_until_idle(timeout=2.0)

        assert consumer.calls.count("a.created") + consumer.calls.count("a.updated") == 2
        assert consumer.calls.count("c.only") == 3
        assert len(consumer.calls) == 5

        stats = engine.get_stats()
        assert stats.registered == 3
        assert stats.pending == 0
        assert stats.retry_count == 0
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_get_handlers_after_registration(self, engine, flaky_consumer):
        service = ServiceA()
        engine.attach_consumer(flaky_consumer)
        engine.enqueue(service)
        await engine.trigger_registration()

        handlers = engine.get_handlers("a.updated")

        assert [h.method_name for h in handlers] == ["on_updated"]
        assert engine.get_handlers("b.anything") == []

        await engine.shutdown()
        assert engine.get_handlers("a.updated") == []

    @pytest.mark.asyncio
    async def test_tick_without_consumer_leaves_queue_untouched(self, engine):
        """Test the timer disarms when no consumer is attached."""
        engine.enqueue(ServiceA())
        await asyncio.sleep(0.02)

        stats = engine.get_stats()
        assert stats.pending == 1
        assert stats.registered == 0
        assert engine.state == EngineState.IDLE
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_attach_consumer_triggers_registration(self, event_bridge, flaky_consumer):
        """Test attaching a consumer drains the queue without waiting for a tick."""
        engine = DiscoveryEngine(bridge=event_bridge)
        engine.enqueue(ServiceA())

        engine.attach_consumer(flaky_consumer)
        assert await engine.wait_until_idle(timeout=0.05)

        assert engine.get_stats().registered == 1
        assert flaky_consumer.subscribed_types == ["a.created", "a.updated"]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_attach_trigger(self, engine, flaky_consumer):
        """Test a registration scheduled by attach_consumer does not outlive shutdown."""
        engine.enqueue(ServiceA())
        engine.attach_consumer(flaky_consumer)

        await engine.shutdown()
        await asyncio.sleep(0.01)

        assert flaky_consumer.calls == []
        assert engine.get_stats().registered == 0

    def test_attach_consumer_without_running_loop(self, engine, flaky_consumer):
        """Test attaching outside an event loop keeps the queue for later."""
        engine.enqueue(ServiceA())
        engine.attach_consumer(flaky_consumer)

        assert engine.get_stats().pending == 1
        assert flaky_consumer.calls == []

    @pytest.mark.asyncio
    async def test_trigger_without_consumer_defers(self, engine):
        """Test trigger_registration is a no-op until a consumer is attached."""
        engine.enqueue(ServiceA())

        stats = await engine.trigger_registration()

        assert stats.pending == 1
        assert stats.registered == 0
        await engine.shutdown()

    def test_enqueue_without_running_loop(self, engine):
        """Test enqueue outside an event loop queues without arming the timer."""
        assert engine.enqueue(ServiceA())
        assert engine.state == EngineState.IDLE
        assert engine.get_stats().pending == 1

    @pytest.mark.asyncio
    async def test_with_in_process_consumer(self, engine):
        """Test registered handlers receive events from a real transport."""
        received = []

        class Listener:
            @event_handler("user.created")
            async def on_user(self, event):
                received.append(event)

        consumer = InProcessConsumer()
        consumer.connect()
        engine.attach_consumer(consumer)
        engine.enqueue(Listener())
        await engine.trigger_registration()

        delivered = await consumer.publish("user.created", {"id": 1})

        assert delivered == 1
        assert received == [{"id": 1}]
        await engine.shutdown()


class TestEnqueueIdempotence:
    """Tests for duplicate enqueue handling."""

    def test_enqueue_twice_before_processing(self, engine):
        """Test the same instance is queued only once."""
        service = ServiceA()

        assert engine.enqueue(service) is True
        assert engine.enqueue(service) is False
        assert engine.get_stats().pending == 1

    def test_enqueue_none_is_ignored(self, engine):
        """Test enqueue(None) never raises."""
        assert engine.enqueue(None) is False
        assert engine.get_stats().pending == 0

    @pytest.mark.asyncio
    async def test_enqueue_after_registration_is_noop(self, engine, flaky_consumer):
        """Test a registered instance is never subscribed twice."""
        service = ServiceA()
        engine.attach_consumer(flaky_consumer)
        engine.enqueue(service)
        await engine.trigger_registration()

        assert engine.enqueue(service) is False
        await engine.trigger_registration()

        assert flaky_consumer.subscribed_types == ["a.created", "a.updated"]
        assert engine.is_registered(service)
        await engine.shutdown()

    def test_enqueue_many(self, engine):
        """Test enqueue_many counts only newly queued instances."""
        a = ServiceA()
        assert engine.enqueue_many([a, ServiceB(), a, None]) == 2

    def test_value_equal_instances_are_distinct(self, engine):
        """Test instances equal by value keep separate identities."""

        class Point:
            def __init__(self, x):
                self.x = x

            def __eq__(self, other):
                return isinstance(other, Point) and other.x == self.x

            def __hash__(self):
                return hash(self.x)

        assert engine.enqueue(Point(1))
        assert engine.enqueue(Point(1))
        assert engine.get_stats().pending == 2

    def test_disabled_engine_ignores_instances(self, event_bridge):
        """Test enqueue is accepted and ignored when discovery is disabled."""
        engine = DiscoveryEngine(config=DiscoveryConfig(enabled=False), bridge=event_bridge)

        assert engine.enqueue(ServiceA()) is False
        assert engine.get_stats().pending == 0


class TestBatchProcessing:
    """Tests for batch isolation and sizing."""

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_batch_peers(self, engine, flaky_consumer):
        """Test one instance failing leaves the others registered."""
        flaky_consumer.fail_always = {"rejected.event"}
        engine.attach_consumer(flaky_consumer)
        engine.enqueue_many([ServiceA(), RejectedService(), ServiceC()])

        stats = await engine.trigger_registration()

        assert stats.registered == 2
        assert stats.retry_count == 1
        assert stats.scheduled_retries == 1
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_trigger_drains_in_batches(self, event_bridge, flaky_consumer):
        """Test a large queue is processed in BATCH_SIZE chunks."""
        engine = FastDiscoveryEngine(consumer=flaky_consumer, bridge=event_bridge)
        sizes = []
        event_bridge.subscribe(EventNames.BATCH_PROCESSED, lambda size, _ms: sizes.append(size))

        engine.enqueue_many(ServiceA() for _ in range(25))
        stats = await engine.trigger_registration()

        assert sizes == [10, 10, 5]
        assert stats.registered == 25
        assert stats.pending == 0
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_batch_size_set_on_subclass(self, event_bridge, flaky_consumer):
        """Test batch size comes from the class constant, not configuration."""

        class SmallBatchEngine(FastDiscoveryEngine):
            BATCH_SIZE = 4

        engine = SmallBatchEngine(consumer=flaky_consumer, bridge=event_bridge)
        sizes = []
        event_bridge.subscribe(EventNames.BATCH_PROCESSED, lambda size, _ms: sizes.append(size))

        engine.enqueue_many(ServiceA() for _ in range(10))
        await engine.trigger_registration()

        assert sizes == [4, 4, 2]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_trigger_while_processing_returns_immediately(self, engine):
        """Test only one batch is processed at a time."""
        slow = FlakyConsumer(delay=0.05)
        engine.attach_consumer(slow)
        engine.enqueue(ServiceA())

        first = asyncio.ensure_future(engine.trigger_registration())
        await asyncio.sleep(0.01)
        assert engine.state == EngineState.PROCESSING

        second = await engine.trigger_registration()
        assert second.registered == 0

        stats = await first
        assert stats.registered == 1
        assert slow.calls == ["a.created", "a.updated"]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_lifecycle_events_published(self, engine, event_bridge, flaky_consumer):
        """Test enqueue and registration are observable on the bridge."""
        enqueued, registered = [], []
        event_bridge.subscribe(EventNames.INSTANCE_ENQUEUED, enqueued.append)
        event_bridge.subscribe(
            EventNames.INSTANCE_REGISTERED, lambda key, count: registered.append(count)
        )

        engine.attach_consumer(flaky_consumer)
        engine.enqueue(ServiceC())
        await engine.trigger_registration()

        assert len(enqueued) == 1
        assert registered == [3]
        await engine.shutdown()


class TestRetryAndAbandonment:
    """Tests for backoff and the retry ceiling."""

    @pytest.mark.asyncio
    async def test_backoff_delays_double(self, engine, event_bridge):
        """Test successive retry delays are non-decreasing powers of two."""
        delays = []
        event_bridge.subscribe(
            EventNames.INSTANCE_RETRY_SCHEDULED,
            lambda key, attempts, delay_ms: delays.append((attempts, delay_ms)),
        )
        engine.attach_consumer(FlakyConsumer(fail_always={"rejected.event"}))
        engine.enqueue(RejectedService())

        await engine.trigger_registration()
        assert await engine.wait_until_idle(timeout=2.0)

        assert delays == [(1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0)]
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_abandoned_after_max_retries(self, engine, event_bridge):
        """Test an always-failing instance is dropped after max_retries attempts."""
        abandoned = []
        event_bridge.subscribe(
            EventNames.INSTANCE_ABANDONED, lambda key, error: abandoned.append(error)
        )
        consumer = FlakyConsumer(fail_always={"rejected.event"})
        service = RejectedService()
        engine.attach_consumer(consumer)
        engine.enqueue(service)

        await engine.trigger_registration()
        assert await engine.wait_until_idle(timeout=2.0)

        assert consumer.calls == ["rejected.event"] * 5
        assert len(abandoned) == 1
        assert isinstance(abandoned[0], RetryExhaustedError)
        assert abandoned[0].attempts == 5

        stats = engine.get_stats()
        assert stats.abandoned == 1
        assert stats.retry_count == 0
        assert stats.registered == 0

        assert engine.enqueue(service) is False
        await asyncio.sleep(0.02)
        assert len(consumer.calls) == 5
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_enqueue_during_backoff_is_noop(self, event_bridge):
        """Test an instance waiting out a backoff is not queued again."""
        config = DiscoveryConfig(base_delay_ms=500)
        consumer = FlakyConsumer(fail_times={"rejected.event": 1})
        engine = FastDiscoveryEngine(config=config, consumer=consumer, bridge=event_bridge)
        service = RejectedService()
        engine.enqueue(service)

        await engine.trigger_registration()

        assert engine.retry_attempts(service) == 1
        assert engine.enqueue(service) is False
        assert engine.get_stats().pending == 0
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_partial_registration_resumes(self, engine):
        """Test a retried instance only subscribes its remaining handlers."""
        consumer = FlakyConsumer(fail_times={"c.second": 1})
        engine.attach_consumer(consumer)
        engine.enqueue(ServiceC())

        await engine.trigger_registration()
        assert await engine.wait_until_idle(timeout=1.0)

        assert consumer.subscribed_types == ["c.first", "c.second", "c.third"]
        assert engine.get_stats().registered == 1
        await engine.shutdown()


class TestShutdown:
    """Tests for engine shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending_retries(self, event_bridge):
        """Test shutdown clears state and no delayed re-enqueue fires."""
        config = DiscoveryConfig(base_delay_ms=10)
        consumer = FlakyConsumer(fail_always={"rejected.event"})
        engine = FastDiscoveryEngine(config=config, consumer=consumer, bridge=event_bridge)
        engine.enqueue(RejectedService())
        await engine.trigger_registration()
        assert engine.get_stats().scheduled_retries == 1

        await engine.shutdown()
        await asyncio.sleep(0.05)

        stats = engine.get_stats()
        assert stats.pending == 0
        assert stats.registered == 0
        assert stats.retry_count == 0
        assert stats.scheduled_retries == 0
        assert engine.state == EngineState.IDLE
        assert consumer.calls == ["rejected.event"]

    @pytest.mark.asyncio
    async def test_shutdown_discards_in_flight_batch(self, engine):
        """Test a batch finishing after shutdown does not register anything."""
        engine.attach_consumer(FlakyConsumer(delay=0.03))
        engine.enqueue(ServiceA())

        pending = asyncio.ensure_future(engine.trigger_registration())
        await asyncio.sleep(0.01)
        await engine.shutdown()
        await pending

        assert engine.get_stats().registered == 0


class TestSingleton:
    """Tests for the default engine."""

    def setup_method(self):
        DiscoveryEngine.reset_instance()
        EventBridge.reset_instance()

    def teardown_method(self):
        DiscoveryEngine.reset_instance()
        EventBridge.reset_instance()

    def test_instance_is_shared(self):
        assert DiscoveryEngine.instance() is DiscoveryEngine.instance()

    def test_reset_instance(self):
        first = DiscoveryEngine.instance()
        DiscoveryEngine.reset_instance()
        assert DiscoveryEngine.instance() is not first

    def test_default_constants(self):
        engine = DiscoveryEngine.instance()
        assert DiscoveryEngine.BATCH_SIZE == 10
        assert DiscoveryEngine.POLL_INTERVAL_MS == 100
        assert "batch_size" not in DiscoveryConfig.model_fields
        assert "poll_interval_ms" not in DiscoveryConfig.model_fields
        assert engine.config.base_delay_ms == DiscoveryEngine.BASE_DELAY_MS == 100
        assert engine.config.max_retries == DiscoveryEngine.MAX_RETRIES == 5
