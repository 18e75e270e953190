"""Transport boundary: the Consumer protocol and an in-process transport.

The discovery engine only ever calls ``subscribe``. Everything else
about the transport (connection, delivery, ordering, dead-lettering)
belongs to the transport itself.

Example:
    >>> consumer = InProcessConsumer()
    >>> consumer.connect()
    >>> engine.attach_consumer(consumer)
    >>> await consumer.publish("order.created", {"order_id": 42})
    1
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from pyee.base import EventEmitter

from .exceptions import ConsumerNotReadyError
from .logging import log_debug, log_info

EventCallback = Callable[[Any], "Awaitable[None] | None"]


@runtime_checkable
class Consumer(Protocol):
    """Transport subscription primitive.

    ``subscribe`` may return None or an awaitable; failure is signaled
    by raising (or by the awaitable raising).
    """

    def subscribe(
        self,
        event_type: str,
        handler: EventCallback,
        options: dict[str, Any] | None = None,
    ) -> Awaitable[None] | None: ...


class InProcessConsumer:
    """In-process transport backed by a pyee EventEmitter.

    Delivers published events to subscribed handlers in subscription
    order, awaiting coroutine handlers one after another.

    Example:
        >>> consumer = InProcessConsumer()
        >>> consumer.connect()
        >>> await consumer.subscribe("user.created", on_user_created)
        >>> await consumer.publish("user.created", {"id": 1})
        1
    """

    def __init__(self) -> None:
        self._emitter = EventEmitter()
        self._connected = False
        self._options: dict[int, dict[str, Any]] = {}

    def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        log_info("InProcessConsumer connected")

    def disconnect(self) -> None:
        """Disconnect and drop all subscriptions."""
        if not self._connected:
            return
        self._connected = False
        self._emitter.remove_all_listeners()
        self._options.clear()
        log_info("InProcessConsumer disconnected")

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def subscribe(
        self,
        event_type: str,
        handler: EventCallback,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Subscribe a handler to an event type.

        Raises:
            ConsumerNotReadyError: If the consumer is not connected.
        """
        if not self._connected:
            raise ConsumerNotReadyError(f"Cannot subscribe to {event_type}: consumer not connected")
        self._emitter.on(event_type, handler)
        self._options[id(handler)] = dict(options or {})
        log_debug(f"InProcessConsumer: Subscribed to {event_type}")

    async def publish(self, event_type: str, event: Any) -> int:
        """Deliver an event to every handler subscribed to ``event_type``.

        Returns:
            Number of handlers invoked.

        Raises:
            ConsumerNotReadyError: If the consumer is not connected.
        """
        if not self._connected:
            raise ConsumerNotReadyError(f"Cannot publish {event_type}: consumer not connected")

        handlers = self.subscriptions(event_type)
        for handler in handlers:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        return len(handlers)

    def subscriptions(self, event_type: str) -> list[EventCallback]:
        """Handlers currently subscribed to an event type."""
        return list(self._emitter.listeners(event_type))

    def subscription_options(self, handler: EventCallback) -> dict[str, Any]:
        """Options passed when ``handler`` was subscribed."""
        return dict(self._options.get(id(handler), {}))

    @property
    def event_types(self) -> list[str]:
        return list(self._emitter.event_names())


__all__ = ["Consumer", "EventCallback", "InProcessConsumer"]
