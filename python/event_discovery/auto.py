"""Automatic registration of tagged services.

Three entry points feed instances into the discovery engine without the
caller wiring each one by hand:

- ``@auto_events()`` classes enqueue themselves once ``__init__`` returns.
- Subclasses of ``AutoEventHandlerBase`` do the same without a decorator.
- ``AutoRegistrationService`` scans an arbitrary collection of already
  constructed objects (a container's providers, a plugin list) and
  enqueues those that carry handlers.

Example:
    >>> @auto_events()
    ... class BillingService:
    ...     @event_handler("invoice.paid")
    ...     async def on_paid(self, event):
    ...         ...
    ...
    >>> service = BillingService()          # enqueued with the default engine
    >>> await DiscoveryEngine.instance().trigger_registration()
"""

from __future__ import annotations

import functools
from collections.abc import Iterable
from typing import Any

from .engine import DiscoveryEngine
from .explorer import MetadataExplorer
from .identity import service_name
from .logging import log_debug, log_info
from .tagging.decorators import AUTO_EVENTS_ATTRIBUTE, is_auto_events
from .tagging.readers import DescribedHandlersTagReader
from .types import DiscoveryStats

ENGINE_ATTRIBUTE = "discovery_engine"

_WRAPPED_MARKER = "__auto_registration__"

_HOOK_MARKER = "__auto_registration_hook__"


def resolve_engine(instance: Any) -> DiscoveryEngine:
    """Engine an auto-registering instance should enqueue into."""
    engine = getattr(instance, ENGINE_ATTRIBUTE, None)
    if isinstance(engine, DiscoveryEngine):
        return engine
    return DiscoveryEngine.instance()


def install_auto_registration(cls: type) -> type:
    """Wrap ``cls.__init__`` so new instances enqueue themselves.

    Only the wrapper of the most-derived ``__init__`` enqueues, once the
    whole construction chain has returned. Subclasses defined later are
    wrapped as they are created, so an overriding ``__init__`` still
    enqueues after it completes. Nothing is enqueued when the
    most-derived class has auto events disabled.
    """
    _install_subclass_hook(cls)

    original = cls.__dict__.get("__init__")
    if original is None:
        inherited = getattr(cls, "__init__", None)
        if getattr(inherited, _WRAPPED_MARKER, False):
            return cls
        original = inherited
    elif getattr(original, _WRAPPED_MARKER, False):
        return cls

    @functools.wraps(original)
    def __init__(self: Any, *args: Any, **kwargs: Any) -> None:
        original(self, *args, **kwargs)
        # Base-class wrappers run inside the subclass __init__
        if type(self).__init__ is __init__ and is_auto_events(self):
            resolve_engine(self).enqueue(self)

    setattr(__init__, _WRAPPED_MARKER, True)
    cls.__init__ = __init__  # type: ignore[misc]
    log_debug(f"Installed auto registration on {cls.__qualname__}")
    return cls


def _install_subclass_hook(cls: type) -> None:
    if getattr(cls.__init_subclass__, _HOOK_MARKER, False):
        return
    own_hook = cls.__dict__.get("__init_subclass__")

    def __init_subclass__(sub: type, **kwargs: Any) -> None:
        if own_hook is not None:
            own_hook.__func__(sub, **kwargs)
        else:
            super(cls, sub).__init_subclass__(**kwargs)
        if is_auto_events(sub):
            install_auto_registration(sub)

    setattr(__init_subclass__, _HOOK_MARKER, True)
    cls.__init_subclass__ = classmethod(__init_subclass__)  # type: ignore[assignment]


class AutoEventHandlerBase:
    """Base class whose subclasses register their handlers automatically.

    Set ``__auto_events__ = False`` on a subclass to opt out. Assign a
    ``discovery_engine`` attribute anywhere in ``__init__`` to target a
    specific engine; the enqueue happens after ``__init__`` returns.

    Example:
        >>> class AuditService(AutoEventHandlerBase):
        ...     def __init__(self, engine):
        ...         self.discovery_engine = engine
        ...
        ...     @event_handler("user.deleted")
        ...     async def on_user_deleted(self, event):
        ...         ...
    """

    __auto_events__ = True

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.__dict__.get(AUTO_EVENTS_ATTRIBUTE, True) is not False:
            install_auto_registration(cls)


class AutoRegistrationService:
    """Scans candidate objects and feeds the ones with handlers to the engine.

    Attributes:
        engine: Engine that receives the candidates.
        explorer: Explorer used to detect tagged methods.
    """

    def __init__(
        self,
        engine: DiscoveryEngine | None = None,
        explorer: MetadataExplorer | None = None,
    ) -> None:
        self.engine = engine or DiscoveryEngine.instance()
        self.explorer = explorer or self.engine.explorer

    def scan(self, candidates: Iterable[Any]) -> int:
        """Enqueue every candidate that declares event handlers.

        A candidate qualifies when it is marked ``@auto_events``, defines
        ``describe_handlers()``, or has at least one tagged method.
        Candidates whose class has auto events explicitly disabled are
        skipped.

        Returns:
            Number of candidates newly enqueued.
        """
        enqueued = 0
        skipped = 0
        for candidate in candidates:
            if candidate is None:
                continue
            if getattr(type(candidate), AUTO_EVENTS_ATTRIBUTE, None) is False:
                log_debug(f"Auto events disabled for {service_name(candidate)}, skipping")
                skipped += 1
                continue
            if not self._has_handlers(candidate):
                skipped += 1
                continue
            if self.engine.enqueue(candidate):
                enqueued += 1

        log_info("Auto registration scan complete", {"enqueued": enqueued, "skipped": skipped})
        return enqueued

    async def discover_and_register(self, candidates: Iterable[Any] = ()) -> DiscoveryStats:
        """Scan ``candidates``, then drain the engine queue immediately."""
        self.scan(candidates)
        stats = await self.engine.trigger_registration()
        log_info(
            "Auto registration triggered",
            {
                "pending": stats.pending,
                "registered": stats.registered,
                "retry_count": stats.retry_count,
            },
        )
        return stats

    def _has_handlers(self, candidate: Any) -> bool:
        if is_auto_events(candidate):
            return True
        if DescribedHandlersTagReader.describes_handlers(candidate):
            return True
        return self.explorer.has_event_handlers(candidate)


__all__ = [
    "ENGINE_ATTRIBUTE",
    "AutoEventHandlerBase",
    "AutoRegistrationService",
    "install_auto_registration",
    "resolve_engine",
]
