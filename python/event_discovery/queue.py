"""Pending-registration queue and registered-instance set.

Both are plain data structures keyed by ``instance_key()``. They are
mutated only from the engine's event loop, so no locking is done here.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .identity import instance_key


@dataclass(frozen=True)
class QueueEntry:
    """An instance awaiting registration."""

    instance: Any
    key: str
    enqueued_at: float


class DiscoveryQueue:
    """FIFO queue of instances, deduplicated by identity key.

    An instance enqueued several times before it is drained is still a
    single logical entry, and keeps its original position.

    Example:
        >>> queue = DiscoveryQueue()
        >>> queue.enqueue(service, now=0.0)
        True
        >>> queue.enqueue(service, now=1.0)
        False
        >>> [e.instance for e in queue.drain_batch(10)]
        [service]
    """

    def __init__(self) -> None:
        self._entries: OrderedDict[str, QueueEntry] = OrderedDict()

    def enqueue(self, instance: Any, now: float) -> bool:
        """Add an instance at the back of the queue.

        Returns:
            True if added, False if the instance was already queued.
        """
        key = instance_key(instance)
        if key in self._entries:
            return False
        self._entries[key] = QueueEntry(instance=instance, key=key, enqueued_at=now)
        return True

    def drain_batch(self, size: int) -> list[QueueEntry]:
        """Remove and return up to ``size`` of the oldest entries."""
        batch: list[QueueEntry] = []
        while self._entries and len(batch) < size:
            _, entry = self._entries.popitem(last=False)
            batch.append(entry)
        return batch

    def remove(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries.values()))


class RegisteredSet:
    """Instances whose tagged methods have all been subscribed.

    Append-only during normal operation; ``clear()`` is only used on
    engine shutdown. A strong reference to each instance is kept so its
    identity key cannot be reused while it is a member.
    """

    def __init__(self) -> None:
        self._members: dict[str, Any] = {}

    def add(self, instance: Any) -> str:
        """Add an instance and return its key."""
        key = instance_key(instance)
        self._members.setdefault(key, instance)
        return key

    def keys(self) -> list[str]:
        return list(self._members)

    def clear(self) -> None:
        self._members.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._members

    def __len__(self) -> int:
        return len(self._members)


__all__ = ["QueueEntry", "DiscoveryQueue", "RegisteredSet"]
