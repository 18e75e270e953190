"""In-process event bridge for discovery lifecycle notifications.

The engine, the registration executor and the performance monitor
publish what discovery is doing on a shared pyee ``EventEmitter``:
instances enqueued, registered, rescheduled after a failure or
abandoned, batches finished, and handler errors.

Abandonment is otherwise only a log line, so subscribing to
``instance.abandoned`` is how a caller finds out a service never got
its handlers wired.

Example:
    >>> bridge = EventBridge.instance()
    >>> bridge.start()
    >>> bridge.subscribe(EventNames.INSTANCE_ABANDONED, on_abandoned)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pyee.base import EventEmitter

from .logging import log_debug, log_info, log_warn

Listener = Callable[..., Any]


class EventNames:
    """Names of the lifecycle events published on the bridge.

    Payloads, as positional arguments:
        instance.enqueued: (instance_key)
        instance.registered: (instance_key, handler_count)
        instance.retry_scheduled: (instance_key, attempts, delay_ms)
        instance.abandoned: (instance_key, RetryExhaustedError)
        batch.processed: (batch_size, duration_ms)
        handler.error: (event_type, HandlerInvocationError)
        monitor.warning: (message)
    """

    INSTANCE_ENQUEUED = "instance.enqueued"
    INSTANCE_REGISTERED = "instance.registered"
    INSTANCE_RETRY_SCHEDULED = "instance.retry_scheduled"
    INSTANCE_ABANDONED = "instance.abandoned"
    BATCH_PROCESSED = "batch.processed"
    HANDLER_ERROR = "handler.error"
    MONITOR_WARNING = "monitor.warning"


class EventBridge:
    """Shared lifecycle bus.

    Events published while the bridge is stopped are dropped. Every
    listener runs behind its own guard: a listener that raises is logged
    and the remaining listeners still run, so nothing a listener does
    can reach the engine.
    """

    _instance: EventBridge | None = None

    def __init__(self) -> None:
        self._emitter = EventEmitter()
        self._guards: dict[tuple[str, Listener], Listener] = {}
        self._active = False

    @classmethod
    def instance(cls) -> EventBridge:
        """Get the process-wide bridge."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Stop and drop the process-wide bridge (primarily for tests)."""
        if cls._instance is not None:
            cls._instance.stop()
        cls._instance = None

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        log_info("EventBridge started")

    def stop(self) -> None:
        """Deactivate the bridge and drop every listener."""
        if not self._active:
            return
        self._active = False
        self._emitter.remove_all_listeners()
        self._guards.clear()
        log_info("EventBridge stopped")

    def subscribe(self, event: str, listener: Listener) -> None:
        """Call ``listener`` with the payload of every ``event``.

        Subscribing the same listener to the same event twice is a no-op.
        """
        if (event, listener) in self._guards:
            return
        guard = self._guard(event, listener)
        self._guards[(event, listener)] = guard
        self._emitter.on(event, guard)
        log_debug(f"Subscribed to {event}: {getattr(listener, '__name__', listener)}")

    def unsubscribe(self, event: str, listener: Listener) -> None:
        """Stop calling ``listener`` for ``event``.

        Raises:
            KeyError: If the listener is not subscribed to ``event``.
        """
        guard = self._guards.pop((event, listener))
        self._emitter.remove_listener(event, guard)

    def publish(self, event: str, *args: Any) -> None:
        if not self._active:
            log_debug(f"EventBridge not active, dropping event: {event}")
            return
        self._emitter.emit(event, *args)

    @property
    def is_active(self) -> bool:
        return self._active

    @staticmethod
    def _guard(event: str, listener: Listener) -> Listener:
        def guarded(*args: Any) -> None:
            try:
                listener(*args)
            except Exception as e:
                log_warn(
                    f"EventBridge listener error on {event}: {e}",
                    {"listener": getattr(listener, "__name__", repr(listener))},
                )

        return guarded


__all__ = ["EventBridge", "EventNames"]
