"""
Event Discovery

This package discovers methods tagged as event handlers on arbitrary
objects and subscribes them with a message transport, tolerating
objects that become ready before the transport does.

Example:
    >>> import event_discovery
    >>> event_discovery.version()
    '0.1.0'

    >>> # Tag handlers
    >>> from event_discovery import auto_events, event_handler
    >>> @auto_events()
    ... class OrderService:
    ...     @event_handler("order.created", priority=10)
    ...     async def on_order_created(self, event):
    ...         ...

    >>> # Enqueue early, register once the transport is ready
    >>> from event_discovery import DiscoveryEngine, InProcessConsumer
    >>> engine = DiscoveryEngine.instance()
    >>> service = OrderService()            # enqueued automatically
    >>> consumer = InProcessConsumer()
    >>> consumer.connect()
    >>> engine.attach_consumer(consumer)
    >>> await engine.trigger_registration()

    >>> # Use structured logging
    >>> event_discovery.log_info("Discovery started", {"pending": 1})

    >>> # Observe the engine
    >>> from event_discovery import EventBridge, EventNames
    >>> EventBridge.instance().start()
    >>> EventBridge.instance().subscribe(EventNames.INSTANCE_ABANDONED, alert)
"""

from __future__ import annotations

# Automatic registration
from event_discovery.auto import (
    AutoEventHandlerBase,
    AutoRegistrationService,
    install_auto_registration,
)

# Configuration
from event_discovery.config import DiscoveryConfig

# Transport boundary
from event_discovery.consumer import Consumer, InProcessConsumer

# Engine and its building blocks
from event_discovery.engine import DiscoveryEngine
from event_discovery.event_bridge import EventBridge, EventNames

# Exceptions
from event_discovery.exceptions import (
    ConfigurationError,
    ConsumerNotReadyError,
    EventDiscoveryError,
    HandlerInvocationError,
    MetadataLookupError,
    RegistrationError,
    RetryExhaustedError,
    SubscriptionError,
)
from event_discovery.executor import RegistrationExecutor
from event_discovery.explorer import MetadataExplorer
from event_discovery.identity import instance_key

# Logging functions
from event_discovery.logging import (
    configure_logging,
    log_debug,
    log_error,
    log_info,
    log_trace,
    log_warn,
)

# Monitoring
from event_discovery.monitor import PerformanceMonitor
from event_discovery.retry import RetryTracker

# Tagging
from event_discovery.tagging import (
    BaseTagReader,
    ChainedTagReader,
    DecoratorTagReader,
    DescribedHandlersTagReader,
    auto_events,
    event_handler,
    get_handler_metadata,
    is_auto_events,
)

# Types
from event_discovery.types import (
    CacheStats,
    DiscoveryStats,
    EngineState,
    HandlerEntry,
    HandlerMetadata,
    LogContext,
    PerformanceMetrics,
    RegisteredHandler,
    RetryPolicy,
    TimingMetrics,
)

__version__ = "0.1.0"

__all__ = [
    # Version info
    "__version__",
    "version",
    # Tagging
    "event_handler",
    "auto_events",
    "get_handler_metadata",
    "is_auto_events",
    "BaseTagReader",
    "ChainedTagReader",
    "DecoratorTagReader",
    "DescribedHandlersTagReader",
    # Engine
    "DiscoveryEngine",
    "MetadataExplorer",
    "RegistrationExecutor",
    "RetryTracker",
    "instance_key",
    # Transport
    "Consumer",
    "InProcessConsumer",
    # Automatic registration
    "AutoEventHandlerBase",
    "AutoRegistrationService",
    "install_auto_registration",
    # Observability
    "EventBridge",
    "EventNames",
    "PerformanceMonitor",
    # Configuration
    "DiscoveryConfig",
    # Logging functions
    "configure_logging",
    "log_error",
    "log_warn",
    "log_info",
    "log_debug",
    "log_trace",
    # Types
    "CacheStats",
    "DiscoveryStats",
    "EngineState",
    "HandlerEntry",
    "HandlerMetadata",
    "LogContext",
    "PerformanceMetrics",
    "RegisteredHandler",
    "RetryPolicy",
    "TimingMetrics",
    # Exceptions
    "EventDiscoveryError",
    "RegistrationError",
    "SubscriptionError",
    "MetadataLookupError",
    "RetryExhaustedError",
    "HandlerInvocationError",
    "ConsumerNotReadyError",
    "ConfigurationError",
]


def version() -> str:
    """Return the package version.

    Returns:
        The version string (e.g., "0.1.0")

    Example:
        >>> import event_discovery
        >>> event_discovery.version()
        '0.1.0'
    """
    return __version__
