"""Metadata explorer with a time-bounded, identity-keyed cache.

The explorer scans an instance's methods for handler tags and memoizes
the result per instance. Expiry is evaluated on read: an entry older
than the TTL is treated as absent and replaced by a fresh scan. There
is no background sweep.

Example:
    >>> explorer = MetadataExplorer()
    >>> handlers = explorer.explore(order_service)
    >>> [h.event_type for h in handlers]
    ['order.created', 'order.cancelled']
    >>> explorer.get_cache_stats().hits
    0
"""

from __future__ import annotations

import time
import weakref
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .exceptions import MetadataLookupError
from .identity import instance_key, service_name
from .logging import log_debug, log_trace
from .tagging import BaseTagReader, ChainedTagReader
from .types import CacheStats, HandlerEntry


@dataclass(frozen=True)
class CacheEntry:
    """Result of one full scan of an instance."""

    handlers: tuple[HandlerEntry, ...]
    has_handlers: bool
    event_types: frozenset[str]
    created_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.created_at >= ttl


class MetadataExplorer:
    """Scans instances for tagged methods and caches the results.

    Cache keys come from ``instance_key()``, never from value equality.
    The cache is bounded (least-recently-used eviction) and entries for
    weak-referenceable instances are dropped when the instance is
    garbage collected.

    Attributes:
        ttl_seconds: Cache entry lifetime.
        max_size: Maximum number of cached instances.
    """

    # Cache entries expire after 5 minutes
    DEFAULT_TTL_SECONDS = 300.0

    DEFAULT_MAX_SIZE = 1000

    def __init__(
        self,
        tag_reader: BaseTagReader | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the explorer.

        Args:
            tag_reader: Metadata lookup. Defaults to ChainedTagReader.default().
            ttl_seconds: Cache entry lifetime in seconds.
            max_size: Maximum number of cached instances.
            clock: Monotonic time source (injectable for tests).
        """
        self._tag_reader = tag_reader or ChainedTagReader.default()
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._finalizers: dict[str, weakref.finalize] = {}
        self._hits = 0
        self._misses = 0

    def explore(self, instance: Any) -> list[HandlerEntry]:
        """Return the tagged methods of an instance.

        Never raises. Returns an empty list for None, for objects with no
        reachable methods and for objects whose methods carry no tags.

        Args:
            instance: The object to explore.

        Returns:
            (method name, metadata) entries in method-definition order.
        """
        entry = self._entry_for(instance)
        return list(entry.handlers) if entry else []

    def has_event_handlers(self, instance: Any) -> bool:
        """Check whether an instance has any tagged methods (cached)."""
        entry = self._entry_for(instance)
        return entry.has_handlers if entry else False

    def get_event_types(self, instance: Any) -> list[str]:
        """Return the unique event types an instance handles, in handler order."""
        entry = self._entry_for(instance)
        if entry is None:
            return []
        return list(dict.fromkeys(h.event_type for h in entry.handlers))

    def invalidate(self, instance: Any) -> bool:
        """Drop the cache entry for an instance.

        Use when an instance's methods change at runtime.

        Returns:
            True if an entry was removed.
        """
        if instance is None:
            return False
        return self._drop(instance_key(instance))

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        for finalizer in self._finalizers.values():
            finalizer.detach()
        self._finalizers.clear()
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        log_debug("MetadataExplorer: Cache cleared")

    def pre_warm(self, instances: Iterable[Any]) -> int:
        """Explore instances ahead of time (useful for long-lived singletons).

        Returns:
            Number of instances explored.
        """
        count = 0
        for instance in instances:
            if instance is None:
                continue
            self.explore(instance)
            count += 1
        log_debug("MetadataExplorer: Cache pre-warmed", {"instances": count})
        return count

    def get_cache_stats(self) -> CacheStats:
        """Return hit/miss counters and the hit rate as a percentage."""
        total = self._hits + self._misses
        hit_rate = round(self._hits / total * 100, 2) if total else 0.0
        return CacheStats(hits=self._hits, misses=self._misses, hit_rate=hit_rate)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _entry_for(self, instance: Any) -> CacheEntry | None:
        if instance is None:
            return None

        try:
            key = instance_key(instance)
        except Exception as e:
            log_debug(f"MetadataExplorer: Cannot compute key for {service_name(instance)}: {e}")
            return None

        now = self._clock()
        cached = self._cache.get(key)

        if cached is not None and not cached.is_expired(now, self.ttl_seconds):
            self._hits += 1
            self._cache.move_to_end(key)
            return cached

        self._misses += 1
        try:
            handlers = self._scan(instance)
        except MetadataLookupError as e:
            log_debug(
                f"MetadataExplorer: {e.message}, treating as no handlers",
                {"instance_key": key},
            )
            self._drop(key)
            return CacheEntry(handlers=(), has_handlers=False, event_types=frozenset(), created_at=now)

        entry = CacheEntry(
            handlers=tuple(handlers),
            has_handlers=bool(handlers),
            event_types=frozenset(h.event_type for h in handlers),
            created_at=now,
        )
        self._store(key, instance, entry)
        return entry

    def _scan(self, instance: Any) -> list[HandlerEntry]:
        handlers: list[HandlerEntry] = []
        for method_name in self._method_names(instance):
            try:
                metadata = self._tag_reader.get_metadata(instance, method_name)
            except Exception as e:
                raise MetadataLookupError(
                    f"Tag lookup failed for {service_name(instance)}.{method_name}: {e}",
                    instance_key=instance_key(instance),
                ) from e
            if metadata is not None:
                log_trace(
                    "MetadataExplorer: Found tagged method",
                    {"method_name": method_name, "event_type": metadata.event_type},
                )
                handlers.append(HandlerEntry(method_name=method_name, metadata=metadata))
        return handlers

    @staticmethod
    def _method_names(instance: Any) -> list[str]:
        """Method names reachable from the instance's type, in definition order."""
        names: dict[str, None] = {}
        for klass in type(instance).__mro__:
            if klass is object:
                continue
            for name, attr in vars(klass).items():
                if name.startswith("__") and name.endswith("__"):
                    continue
                if isinstance(attr, (staticmethod, classmethod)):
                    attr = attr.__func__
                if callable(attr):
                    names.setdefault(name, None)
        return list(names)

    def _store(self, key: str, instance: Any, entry: CacheEntry) -> None:
        self._cache[key] = entry
        self._cache.move_to_end(key)

        if key not in self._finalizers:
            try:
                self._finalizers[key] = weakref.finalize(instance, self._drop, key)
            except TypeError:
                # Not weak-referenceable; LRU bound still applies
                pass

        while len(self._cache) > self.max_size:
            evicted, _ = self._cache.popitem(last=False)
            finalizer = self._finalizers.pop(evicted, None)
            if finalizer is not None:
                finalizer.detach()
            log_trace("MetadataExplorer: Evicted cache entry", {"instance_key": evicted})

    def _drop(self, key: str) -> bool:
        finalizer = self._finalizers.pop(key, None)
        if finalizer is not None:
            finalizer.detach()
        return self._cache.pop(key, None) is not None


__all__ = ["CacheEntry", "MetadataExplorer"]
