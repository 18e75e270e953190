"""Registration executor: subscribes an instance's tagged methods.

For each (method name, metadata) pair the explorer finds, the executor
binds the method to its instance, wraps it so a raising handler can
never take down the transport's dispatch loop, and calls
``consumer.subscribe(event_type, wrapped_handler, options)``.

Example:
    >>> executor = RegistrationExecutor(MetadataExplorer(), consumer)
    >>> await executor.register(order_service)
    2
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any

from .event_bridge import EventBridge, EventNames
from .exceptions import HandlerInvocationError, RegistrationError, SubscriptionError
from .identity import instance_key, service_name
from .logging import log_debug, log_error, log_info, log_warn
from .types import RegisteredHandler

if TYPE_CHECKING:
    from .consumer import Consumer, EventCallback
    from .explorer import MetadataExplorer
    from .types import HandlerEntry


class RegistrationExecutor:
    """Subscribes tagged methods with the transport.

    Subscriptions are remembered per (instance key, method name). When a
    registration fails part-way and is retried, only the handlers that
    were not yet subscribed are subscribed again, so each tagged method
    is subscribed at most once.

    Attributes:
        subscribe_timeout: Seconds to wait for one subscribe call, or None
            to wait indefinitely.
    """

    def __init__(
        self,
        explorer: MetadataExplorer,
        consumer: Consumer | None = None,
        subscribe_timeout: float | None = None,
        bridge: EventBridge | None = None,
    ) -> None:
        self._explorer = explorer
        self._consumer = consumer
        self.subscribe_timeout = subscribe_timeout
        self._bridge = bridge
        self._subscribed: dict[str, set[str]] = {}
        self._registry: dict[str, list[RegisteredHandler]] = {}

    @property
    def consumer(self) -> Consumer | None:
        return self._consumer

    @property
    def is_ready(self) -> bool:
        """True once a consumer is attached."""
        return self._consumer is not None

    def attach_consumer(self, consumer: Consumer) -> None:
        self._consumer = consumer
        log_debug("RegistrationExecutor: Consumer attached")

    async def register(self, instance: Any) -> int:
        """Subscribe every tagged method of ``instance``.

        Args:
            instance: The object whose handlers should be subscribed.

        Returns:
            Number of handlers subscribed by this call. Zero handlers is
            a success, not a failure.

        Raises:
            RegistrationError: If no consumer is attached or metadata
                retrieval fails.
            SubscriptionError: If the transport rejects or times out a
                subscribe call.
        """
        key = instance_key(instance)
        name = service_name(instance)

        if self._consumer is None:
            raise RegistrationError(
                f"No consumer attached, cannot register {name}",
                instance_key=key,
            )

        try:
            handlers = self._explorer.explore(instance)
        except Exception as e:
            raise RegistrationError(
                f"Metadata retrieval failed for {name}: {e}",
                instance_key=key,
            ) from e

        if not handlers:
            log_debug(f"RegistrationExecutor: No event handlers found for {name}")
            return 0

        done = self._subscribed.setdefault(key, set())
        count = 0
        for entry in sorted(handlers, key=lambda h: -h.metadata.priority):
            if entry.method_name in done:
                continue
            wrapped = await self._subscribe(instance, key, entry)
            done.add(entry.method_name)
            self._registry.setdefault(entry.event_type, []).append(
                RegisteredHandler(
                    event_type=entry.event_type,
                    instance_key=key,
                    method_name=entry.method_name,
                    priority=entry.metadata.priority,
                    handler=wrapped,
                )
            )
            count += 1

        log_info(
            f"Registered {count} event handlers from {name}",
            {"instance_key": key, "total_handlers": len(handlers)},
        )
        return count

    def forget(self, key: str) -> None:
        """Drop subscription bookkeeping for one instance."""
        self._subscribed.pop(key, None)
        for event_type in list(self._registry):
            remaining = [h for h in self._registry[event_type] if h.instance_key != key]
            if remaining:
                self._registry[event_type] = remaining
            else:
                del self._registry[event_type]

    def reset(self) -> None:
        self._subscribed.clear()
        self._registry.clear()

    def subscribed_methods(self, key: str) -> set[str]:
        return set(self._subscribed.get(key, set()))

    def get_handlers(self, event_type: str) -> list[RegisteredHandler]:
        """Handlers subscribed for ``event_type``, in subscription order."""
        return list(self._registry.get(event_type, ()))

    def remove_handlers(self, event_type: str) -> int:
        """Drop the registry entries for ``event_type``.

        The transport keeps its subscriptions; the consumer contract has no
        unsubscribe. Removed methods are still never subscribed twice.

        Returns:
            Number of entries removed.
        """
        removed = self._registry.pop(event_type, [])
        log_info(
            f"Removed all handlers for event type: {event_type}",
            {"event_type": event_type, "removed": len(removed)},
        )
        return len(removed)

    @property
    def event_types(self) -> list[str]:
        return list(self._registry)

    async def _subscribe(self, instance: Any, key: str, entry: HandlerEntry) -> EventCallback:
        event_type = entry.event_type
        wrapped = self.wrap_handler(instance, entry)

        try:
            result = self._consumer.subscribe(  # type: ignore[union-attr]
                event_type, wrapped, entry.metadata.subscribe_options()
            )
            if inspect.isawaitable(result):
                if self.subscribe_timeout is not None:
                    await asyncio.wait_for(result, timeout=self.subscribe_timeout)
                else:
                    await result
        except asyncio.TimeoutError as e:
            log_warn(
                f"Subscribe timed out for {event_type}",
                {"instance_key": key, "method_name": entry.method_name},
            )
            raise SubscriptionError(
                f"Subscribe for {event_type} timed out after {self.subscribe_timeout}s",
                event_type=event_type,
                method_name=entry.method_name,
                instance_key=key,
            ) from e
        except Exception as e:
            log_warn(
                f"Failed to register auto handler for {event_type}: {e}",
                {"instance_key": key, "method_name": entry.method_name},
            )
            raise SubscriptionError(
                f"Subscribe for {event_type} failed: {e}",
                event_type=event_type,
                method_name=entry.method_name,
                instance_key=key,
            ) from e

        log_debug(
            f"Registered auto event handler: {service_name(instance)}.{entry.method_name} for {event_type}"
        )
        return wrapped

    def wrap_handler(self, instance: Any, entry: HandlerEntry) -> EventCallback:
        """Bind a tagged method and shield the transport from its exceptions."""
        method = getattr(instance, entry.method_name)
        event_type = entry.event_type
        label = f"{service_name(instance)}.{entry.method_name}"
        bridge = self._bridge

        async def handle(event: Any) -> None:
            try:
                result = method(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                error = HandlerInvocationError(
                    f"Error handling event {event_type} in {label}: {e}",
                    metadata={"event_type": event_type, "handler": label},
                )
                log_error(error.message, {"error_type": type(e).__name__})
                if bridge is not None:
                    bridge.publish(EventNames.HANDLER_ERROR, event_type, error)

        handle.__name__ = f"{entry.method_name}_handler"
        handle.__qualname__ = f"{label}_handler"
        return handle


__all__ = ["RegistrationExecutor"]
