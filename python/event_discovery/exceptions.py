"""Custom exceptions for the event discovery engine.

This module provides a hierarchy of exceptions for error handling
in the discovery and registration pipeline.

None of these escape ``DiscoveryEngine.enqueue()``: registration is
best-effort wiring, so failures are logged and fed into retry state.
They are raised by the lower-level components (executor, consumer,
configuration) and caught by the engine.
"""

from __future__ import annotations

from typing import Any


class EventDiscoveryError(Exception):
    """Base exception for all event discovery errors.

    Attributes:
        message: Human-readable error message.
        instance_key: Key of the instance involved, if any.
        metadata: Additional error context.

    Example:
        >>> try:
        ...     config = DiscoveryConfig.from_yaml("missing.yaml")
        ... except EventDiscoveryError as e:
        ...     print(f"Discovery error: {e}")
    """

    def __init__(
        self,
        message: str,
        *,
        instance_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instance_key = instance_key
        self.metadata = metadata or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for structured logging.

        Returns:
            Dictionary with error details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "instance_key": self.instance_key,
            "metadata": self.metadata,
        }


class RegistrationError(EventDiscoveryError):
    """Raised when an instance's handlers could not be registered.

    Counted as a per-instance failure by the engine and fed into
    the retry tracker.
    """

    pass


class SubscriptionError(RegistrationError):
    """Raised when the transport rejects (or times out) a subscribe call.

    Attributes:
        event_type: The event type that failed to subscribe.
        method_name: The tagged method being subscribed.
    """

    def __init__(
        self,
        message: str,
        *,
        event_type: str | None = None,
        method_name: str | None = None,
        instance_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, instance_key=instance_key, metadata=metadata)
        self.event_type = event_type
        self.method_name = method_name


class MetadataLookupError(EventDiscoveryError):
    """Raised when the tag reader fails while exploring an instance.

    The explorer treats this as "no handlers found" and logs it at
    debug level; it is never fatal.
    """

    pass


class RetryExhaustedError(EventDiscoveryError):
    """Raised (and logged) when an instance exceeds the retry ceiling.

    The instance is permanently abandoned for the process lifetime.

    Attributes:
        attempts: Number of failed attempts recorded.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: int,
        instance_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, instance_key=instance_key, metadata=metadata)
        self.attempts = attempts


class HandlerInvocationError(EventDiscoveryError):
    """Wraps an exception raised by a tagged method during dispatch.

    Caught inside the wrapped handler and logged; never propagated
    into the transport's dispatch loop.
    """

    pass


class ConsumerNotReadyError(EventDiscoveryError):
    """Raised when subscribing through a transport that is not connected."""

    pass


class ConfigurationError(EventDiscoveryError):
    """Raised when discovery configuration cannot be loaded or validated."""

    pass


__all__ = [
    "EventDiscoveryError",
    "RegistrationError",
    "SubscriptionError",
    "MetadataLookupError",
    "RetryExhaustedError",
    "HandlerInvocationError",
    "ConsumerNotReadyError",
    "ConfigurationError",
]
