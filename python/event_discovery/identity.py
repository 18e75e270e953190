"""Stable identity keys for discovered instances.

Every structure in the engine (explorer cache, queue, registered set,
retry tracker) is keyed by ``instance_key(instance)`` rather than by
the object itself, so instances with custom ``__eq__``/``__hash__``
never collide and unhashable instances are still supported.

An instance can pin its own key by exposing a ``discovery_key``
attribute:

    >>> class OrderService:
    ...     discovery_key = "orders"
    >>> instance_key(OrderService())
    'orders'
"""

from __future__ import annotations

from typing import Any

KEY_ATTRIBUTE = "discovery_key"


def instance_key(instance: Any) -> str:
    """Return the identity key for an instance.

    Args:
        instance: Any object.

    Returns:
        The instance's ``discovery_key`` if it defines a non-empty one,
        otherwise ``"<module>.<qualname>@<hex id>"``.
    """
    explicit = getattr(instance, KEY_ATTRIBUTE, None)
    if isinstance(explicit, str) and explicit:
        return explicit

    cls = type(instance)
    return f"{cls.__module__}.{cls.__qualname__}@{id(instance):#x}"


def service_name(instance: Any) -> str:
    """Return the class name used in log messages."""
    return type(instance).__name__


__all__ = ["KEY_ATTRIBUTE", "instance_key", "service_name"]
