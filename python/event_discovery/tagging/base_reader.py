"""Abstract base class for handler tag readers.

A tag reader answers one question: given an instance and a method
name, does that method carry handler metadata? The metadata explorer
calls it once per method during a scan, and may call it again after
a cache miss, so implementations must be side-effect free.

Example Implementation:
    class RegistryTagReader(BaseTagReader):
        def __init__(self, table):
            self._table = table  # {(cls, method_name): HandlerMetadata}

        @property
        def name(self) -> str:
            return "registry"

        def get_metadata(self, instance, method_name):
            return self._table.get((type(instance), method_name))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..types import HandlerMetadata


class BaseTagReader(ABC):
    """Contract for declarative handler metadata lookup."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this reader (for logging/debugging)."""
        ...

    @abstractmethod
    def get_metadata(self, instance: Any, method_name: str) -> HandlerMetadata | None:
        """Return handler metadata for ``instance.method_name``, or None.

        Args:
            instance: The object being explored.
            method_name: Name of a method reachable from its type.

        Returns:
            HandlerMetadata if the method is tagged, otherwise None.
        """
        ...
