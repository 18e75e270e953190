"""Discovery engine: batched, backoff-driven handler registration.

The engine accepts instances whenever they become ready (possibly
before the transport exists), queues them, and registers them in
batches from a self-stopping periodic timer on the asyncio event loop.

State Machine:
    Idle ──enqueue──▶ Scheduled ──tick──▶ Processing ──batch done──▶ Scheduled
      ▲                                                                 │
      └──────────────────────── queue empty ◀───────────────────────────┘

    - Ticks arriving while Processing are ignored
    - trigger_registration() drains immediately, regardless of the timer
    - Failures are re-enqueued after base_delay * 2**attempts ms
    - After max_retries failures the instance is abandoned for the
      lifetime of the engine

Example:
    >>> engine = DiscoveryEngine()
    >>> engine.enqueue(order_service)      # before the transport is up
    True
    >>> consumer.connect()
    >>> engine.attach_consumer(consumer)
    >>> await engine.trigger_registration()
    DiscoveryStats(pending=0, registered=1, retry_count=0, ...)
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from .config import DiscoveryConfig
from .event_bridge import EventBridge, EventNames
from .exceptions import RetryExhaustedError
from .executor import RegistrationExecutor
from .explorer import MetadataExplorer
from .identity import instance_key, service_name
from .logging import log_debug, log_error, log_info, log_trace, log_warn
from .queue import DiscoveryQueue, QueueEntry, RegisteredSet
from .retry import RetryTracker
from .scheduler import DelayedTaskScheduler
from .types import DiscoveryStats, EngineState, RegisteredHandler

if TYPE_CHECKING:
    from .consumer import Consumer


class DiscoveryEngine:
    """Orchestrates discovery and registration of tagged handlers.

    All state (queue, registered set, retry tracker, explorer cache) is
    mutated only from the event loop: the timer tick and the forced
    drain never overlap because both check the Processing guard.

    Attributes:
        config: Engine configuration.
        explorer: Metadata explorer used for every registration.
        executor: Registration executor holding the consumer.
    """

    # Fixed by the engine; subclass to change them
    BATCH_SIZE = 10

    POLL_INTERVAL_MS = 100

    BASE_DELAY_MS = 100

    MAX_RETRIES = 5

    _instance: DiscoveryEngine | None = None

    def __init__(
        self,
        consumer: Consumer | None = None,
        explorer: MetadataExplorer | None = None,
        config: DiscoveryConfig | None = None,
        bridge: EventBridge | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            consumer: Transport to subscribe through. May be attached later.
            explorer: Metadata explorer. Built from config when omitted.
            config: Engine configuration. Defaults match the class constants.
            bridge: Lifecycle event bridge. Defaults to EventBridge.instance().
            clock: Monotonic time source for queue timestamps.
        """
        self.config = config or DiscoveryConfig(
            base_delay_ms=self.BASE_DELAY_MS,
            max_retries=self.MAX_RETRIES,
        )
        self._bridge = bridge or EventBridge.instance()
        self._clock = clock
        self.explorer = explorer or MetadataExplorer(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_size=self.config.cache_max_size,
        )
        self.executor = RegistrationExecutor(
            self.explorer,
            consumer,
            subscribe_timeout=self.config.subscribe_timeout_seconds,
            bridge=self._bridge,
        )

        self._queue = DiscoveryQueue()
        self._registered = RegisteredSet()
        self._retry = RetryTracker(
            max_retries=self.config.max_retries,
            base_delay_ms=self.config.base_delay_ms,
            max_delay_ms=self.config.max_delay_ms,
        )
        self._scheduler = DelayedTaskScheduler()
        self._abandoned: dict[str, Any] = {}
        self._in_flight: set[str] = set()

        self._timer: asyncio.Task[None] | None = None
        self._trigger: asyncio.Task[DiscoveryStats] | None = None
        self._batch: asyncio.Task[None] | None = None
        self._processing = False
        # Bumped on shutdown so a batch finishing afterwards is discarded
        self._generation = 0
        self._settled: asyncio.Event | None = None

    @classmethod
    def instance(cls) -> DiscoveryEngine:
        """Get the process-wide default engine."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and drop the default engine (primarily for tests)."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    # ------------------------------------------------------------------
    # Collaborator API
    # ------------------------------------------------------------------

    def enqueue(self, instance: Any) -> bool:
        """Queue an instance for handler registration.

        Fire-and-forget: never raises. A no-op when the instance is
        already registered, already queued, in flight, waiting out a
        backoff delay, or abandoned.

        Returns:
            True if the instance was added to the queue.
        """
        if instance is None:
            log_debug("DiscoveryEngine: Ignoring enqueue of None")
            return False
        if not self.config.enabled:
            log_debug(f"DiscoveryEngine: Discovery disabled, skipping {service_name(instance)}")
            return False

        try:
            key = instance_key(instance)
        except Exception as e:
            log_debug(f"DiscoveryEngine: Cannot compute key for {service_name(instance)}: {e}")
            return False

        if (
            key in self._registered
            or key in self._abandoned
            or key in self._in_flight
            or self._scheduler.is_scheduled(key)
        ):
            log_trace("DiscoveryEngine: Enqueue is a no-op", {"instance_key": key})
            return False

        return self._accept(instance, key)

    def enqueue_many(self, instances: Iterable[Any]) -> int:
        """Queue several instances. Returns how many were added."""
        return sum(1 for instance in instances if self.enqueue(instance))

    def attach_consumer(self, consumer: Consumer) -> None:
        """Attach the transport and flush instances queued before it existed.

        Inside a running event loop this schedules ``trigger_registration()``
        as a task. Outside one, the queue waits for the next trigger or
        enqueue made from a loop.
        """
        self.executor.attach_consumer(consumer)
        log_info("DiscoveryEngine: Consumer attached", {"pending": len(self._queue)})
        if not self._queue:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_debug("DiscoveryEngine: No running event loop, waiting for trigger_registration()")
            return
        if self._trigger is None or self._trigger.done():
            self._trigger = loop.create_task(
                self.trigger_registration(), name="event-discovery-trigger"
            )

    async def trigger_registration(self) -> DiscoveryStats:
        """Drain the queue now, regardless of the timer phase.

        Used once the transport becomes ready. Returns immediately if a
        batch is already being processed.

        Returns:
            Stats snapshot after draining.
        """
        if self._processing:
            log_debug("DiscoveryEngine: Batch already processing, trigger ignored")
            return self.get_stats()
        if not self.executor.is_ready:
            log_warn(
                "DiscoveryEngine: No consumer attached, deferring registration",
                {"pending": len(self._queue)},
            )
            return self.get_stats()

        log_debug("DiscoveryEngine: Registration triggered", {"pending": len(self._queue)})
        while self._queue:
            if self._processing and self._batch is not None:
                # The timer picked up a batch between ours; wait for it
                await asyncio.shield(self._batch)
                continue
            await self._start_batch()

        self._check_settled()
        return self.get_stats()

    async def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Wait until no work is queued, in flight, or waiting on backoff.

        Returns:
            True if the engine settled, False on timeout.
        """
        if self._is_settled():
            return True
        if self._settled is None:
            self._settled = asyncio.Event()
        self._settled.clear()
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def shutdown(self) -> None:
        """Stop the timer, cancel delayed re-enqueues and reset all state.

        Subscribe calls already issued to the transport are not aborted;
        their outcome is discarded.
        """
        tasks = [task for task in (self._timer, self._trigger) if task is not None]
        self.close()
        for task in tasks:
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def close(self) -> None:
        """Synchronous part of shutdown (safe outside an event loop)."""
        self._generation += 1
        for task in (self._timer, self._trigger):
            if task is not None and not task.done() and not task.get_loop().is_closed():
                task.cancel()
        self._timer = None
        self._trigger = None
        cancelled = self._scheduler.shutdown()
        self._queue.clear()
        self._registered.clear()
        self._retry.reset()
        self._abandoned.clear()
        self.executor.reset()
        log_info("DiscoveryEngine: Shut down", {"cancelled_retries": cancelled})
        self._check_settled()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_stats(self) -> DiscoveryStats:
        return DiscoveryStats(
            pending=len(self._queue),
            registered=len(self._registered),
            retry_count=self._retry.retry_count,
            scheduled_retries=self._scheduler.pending,
            abandoned=len(self._abandoned),
            state=self.state,
        )

    @property
    def state(self) -> EngineState:
        if self._processing:
            return EngineState.PROCESSING
        if self._timer is not None and not self._timer.done():
            return EngineState.SCHEDULED
        return EngineState.IDLE

    def is_registered(self, instance: Any) -> bool:
        return instance_key(instance) in self._registered

    def is_queued(self, instance: Any) -> bool:
        return instance_key(instance) in self._queue

    def get_handlers(self, event_type: str) -> list[RegisteredHandler]:
        """Handlers this engine has subscribed for ``event_type``."""
        return self.executor.get_handlers(event_type)

    def retry_attempts(self, instance: Any) -> int:
        return self._retry.attempts(instance_key(instance))

    @property
    def retry_tracker(self) -> RetryTracker:
        return self._retry

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accept(self, instance: Any, key: str) -> bool:
        if not self._queue.enqueue(instance, self._clock()):
            return False

        if self._settled is not None:
            self._settled.clear()
        log_debug(
            f"DiscoveryEngine: Enqueued {service_name(instance)}",
            {"instance_key": key, "pending": len(self._queue)},
        )
        self._bridge.publish(EventNames.INSTANCE_ENQUEUED, key)
        self._arm_timer()
        return True

    def _requeue(self, instance: Any) -> None:
        """Backoff expiry: put an instance back at the end of the queue."""
        key = instance_key(instance)
        if key in self._registered or key in self._abandoned:
            return
        self._accept(instance, key)

    def _arm_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log_debug("DiscoveryEngine: No running event loop, waiting for trigger_registration()")
            return

        self._timer = loop.create_task(self._run_timer(), name="event-discovery-timer")
        log_debug("DiscoveryEngine: Timer armed", {"interval_ms": self.POLL_INTERVAL_MS})

    async def _run_timer(self) -> None:
        interval = self.POLL_INTERVAL_MS / 1000.0
        try:
            while True:
                await asyncio.sleep(interval)

                if not self.executor.is_ready:
                    log_debug(
                        "DiscoveryEngine: Consumer not ready, pausing timer",
                        {"pending": len(self._queue)},
                    )
                    break
                if self._processing:
                    continue
                if not self._queue:
                    break

                await self._start_batch()

                if not self._queue:
                    break
        finally:
            if self._timer is asyncio.current_task():
                self._timer = None
                log_debug("DiscoveryEngine: Timer disarmed")
            self._check_settled()

    def _start_batch(self) -> asyncio.Future[None]:
        """Drain the next batch and start registering it.

        The guard is set and the batch drained synchronously, so no other
        tick can start a batch in between. The returned future is shielded:
        cancelling the waiter (timer or caller) never aborts subscribes
        already issued.
        """
        self._processing = True
        batch = self._queue.drain_batch(self.BATCH_SIZE)
        self._in_flight.update(entry.key for entry in batch)
        self._batch = asyncio.get_running_loop().create_task(
            self._process_batch(batch, self._generation),
            name="event-discovery-batch",
        )
        return asyncio.shield(self._batch)

    async def _process_batch(self, batch: list[QueueEntry], generation: int) -> None:
        started = time.perf_counter()
        try:
            results = await asyncio.gather(
                *(self.executor.register(entry.instance) for entry in batch),
                return_exceptions=True,
            )
        finally:
            self._processing = False
            self._in_flight.difference_update(entry.key for entry in batch)

        if generation != self._generation:
            log_debug("DiscoveryEngine: Discarding batch results after shutdown")
            self._check_settled()
            return

        for entry, result in zip(batch, results):
            if isinstance(result, BaseException):
                self._handle_failure(entry, result)
            else:
                self._mark_registered(entry, result)

        duration_ms = (time.perf_counter() - started) * 1000
        log_debug(
            "DiscoveryEngine: Batch processed",
            {"size": len(batch), "duration_ms": f"{duration_ms:.2f}", "pending": len(self._queue)},
        )
        self._bridge.publish(EventNames.BATCH_PROCESSED, len(batch), duration_ms)
        self._check_settled()

    def _mark_registered(self, entry: QueueEntry, handler_count: int) -> None:
        self._registered.add(entry.instance)
        self._retry.clear(entry.key)
        self._queue.remove(entry.key)
        log_info(
            f"DiscoveryEngine: Registered {service_name(entry.instance)}",
            {"instance_key": entry.key, "handlers": handler_count},
        )
        self._bridge.publish(EventNames.INSTANCE_REGISTERED, entry.key, handler_count)

    def _handle_failure(self, entry: QueueEntry, error: BaseException) -> None:
        key = entry.key
        name = service_name(entry.instance)
        attempts = self._retry.record_failure(key)

        if attempts >= self._retry.max_retries:
            exhausted = RetryExhaustedError(
                f"Failed to register event handlers for {name} after {attempts} attempts: {error}",
                attempts=attempts,
                instance_key=key,
            )
            log_error(exhausted.message, {"instance_key": key, "error_type": type(error).__name__})
            self._retry.clear(key)
            self._abandoned[key] = entry.instance
            self._bridge.publish(EventNames.INSTANCE_ABANDONED, key, exhausted)
            return

        delay_ms = self._retry.backoff_delay_ms(attempts)
        log_warn(
            f"DiscoveryEngine: Attempt {attempts}/{self._retry.max_retries} failed for {name}, "
            f"retrying in {delay_ms:.0f}ms: {error}",
            {"instance_key": key, "attempt": attempts},
        )
        self._scheduler.schedule(key, delay_ms / 1000.0, self._requeue, entry.instance)
        self._bridge.publish(EventNames.INSTANCE_RETRY_SCHEDULED, key, attempts, delay_ms)

    def _is_settled(self) -> bool:
        return not self._queue and not self._processing and self._scheduler.pending == 0

    def _check_settled(self) -> None:
        if self._settled is not None and self._is_settled():
            self._settled.set()


__all__ = ["DiscoveryEngine"]
