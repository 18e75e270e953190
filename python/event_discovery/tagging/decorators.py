"""Decorators that tag methods as event handlers and classes for auto-registration.

Example:
    >>> from event_discovery import auto_events, event_handler
    >>>
    >>> @auto_events()
    ... class OrderService:
    ...     @event_handler("order.created", priority=10)
    ...     async def on_order_created(self, event):
    ...         ...
    ...
    ...     @event_handler("order.cancelled", retry={"max_attempts": 5})
    ...     def on_order_cancelled(self, event):
    ...         ...
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from ..types import HandlerMetadata, RetryPolicy

HANDLER_ATTRIBUTE = "__event_handler__"
AUTO_EVENTS_ATTRIBUTE = "__auto_events__"

F = TypeVar("F", bound=Callable[..., Any])
C = TypeVar("C", bound=type)


def event_handler(
    event_type: str,
    *,
    priority: int = 0,
    is_async: bool | None = None,
    retry: RetryPolicy | Mapping[str, Any] | None = None,
) -> Callable[[F], F]:
    """Tag a method as a handler for ``event_type``.

    The metadata is stored on the function object itself; the function
    is returned unchanged.

    Args:
        event_type: Event type the method should receive.
        priority: Subscription priority (higher subscribes first).
        is_async: Override async detection. Inferred from the function
            when omitted.
        retry: Optional transport retry hint.

    Returns:
        A decorator that attaches a HandlerMetadata to the method.

    Raises:
        pydantic.ValidationError: If ``event_type`` is empty.
    """
    retry_policy = RetryPolicy.model_validate(retry) if retry is not None else None

    def decorator(func: F) -> F:
        metadata = HandlerMetadata(
            event_type=event_type,
            priority=priority,
            is_async=inspect.iscoroutinefunction(func) if is_async is None else is_async,
            retry_policy=retry_policy,
        )
        setattr(func, HANDLER_ATTRIBUTE, metadata)
        return func

    return decorator


def get_handler_metadata(func: Any) -> HandlerMetadata | None:
    """Return the metadata attached by ``@event_handler``, if any.

    Staticmethod and classmethod wrappers are unwrapped first.
    """
    if isinstance(func, (staticmethod, classmethod)):
        func = func.__func__
    metadata = getattr(func, HANDLER_ATTRIBUTE, None)
    return metadata if isinstance(metadata, HandlerMetadata) else None


def auto_events(enabled: bool = True) -> Callable[[C], C]:
    """Mark a class for automatic handler registration.

    Instances of a marked class enqueue themselves with the discovery
    engine once ``__init__`` completes. The engine is taken from the
    instance's ``discovery_engine`` attribute when present, otherwise
    the default ``DiscoveryEngine.instance()``.

    Args:
        enabled: Set False to keep the marker but skip registration.
    """

    def decorator(cls: C) -> C:
        from ..auto import install_auto_registration

        setattr(cls, AUTO_EVENTS_ATTRIBUTE, enabled)
        if enabled:
            install_auto_registration(cls)
        return cls

    return decorator


def is_auto_events(obj: Any) -> bool:
    """Check whether an instance or class is marked with ``@auto_events``."""
    cls = obj if isinstance(obj, type) else type(obj)
    return getattr(cls, AUTO_EVENTS_ATTRIBUTE, False) is True


__all__ = [
    "HANDLER_ATTRIBUTE",
    "AUTO_EVENTS_ATTRIBUTE",
    "event_handler",
    "get_handler_metadata",
    "auto_events",
    "is_auto_events",
]
