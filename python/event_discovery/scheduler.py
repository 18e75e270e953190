"""Keyed delayed-task scheduler on top of the asyncio event loop.

Used by the engine for backoff re-enqueues. Every scheduled callback
is tracked so ``shutdown()`` can cancel all of them; nothing is left
firing after the engine stops.

Example:
    >>> scheduler = DelayedTaskScheduler()
    >>> scheduler.schedule("svc", 0.2, engine.requeue, service)
    >>> scheduler.is_scheduled("svc")
    True
    >>> scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any


class DelayedTaskScheduler:
    """Schedules one delayed callback per key."""

    def __init__(self) -> None:
        self._handles: dict[str, asyncio.TimerHandle] = {}

    def schedule(
        self,
        key: str,
        delay_s: float,
        callback: Callable[..., Any],
        *args: Any,
    ) -> asyncio.TimerHandle:
        """Run ``callback(*args)`` after ``delay_s`` seconds.

        Replaces any callback already scheduled for ``key``.

        Raises:
            RuntimeError: If called outside a running event loop.
        """
        self.cancel(key)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay_s, self._fire, key, callback, args)
        self._handles[key] = handle
        return handle

    def cancel(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_scheduled(self, key: str) -> bool:
        return key in self._handles

    @property
    def pending(self) -> int:
        return len(self._handles)

    def shutdown(self) -> int:
        """Cancel every scheduled callback.

        Returns:
            Number of callbacks cancelled.
        """
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        return count

    def _fire(self, key: str, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self._handles.pop(key, None)
        callback(*args)


__all__ = ["DelayedTaskScheduler"]
