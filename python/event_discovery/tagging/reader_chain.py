"""Ordered chain of tag readers.

The chain asks each reader in turn and returns the first non-None
answer. Readers raising an exception are not skipped: the error
propagates to the explorer, which treats the whole instance as
having no handlers (a metadata lookup failure).

Default Chain (when using .default()):
- DescribedHandlersTagReader - explicit ``describe_handlers()`` declarations
- DecoratorTagReader         - ``@event_handler`` tags

Usage:
    chain = ChainedTagReader.default()
    chain.add_reader(MyReader())
    metadata = chain.get_metadata(instance, "on_order_created")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base_reader import BaseTagReader

if TYPE_CHECKING:
    from ..types import HandlerMetadata


class ChainedTagReader(BaseTagReader):
    """Tag reader that consults several readers in order."""

    def __init__(self, readers: list[BaseTagReader] | None = None) -> None:
        self._readers: list[BaseTagReader] = list(readers or [])

    @classmethod
    def default(cls) -> ChainedTagReader:
        """Create a chain with the built-in readers.

        Returns:
            Chain with DescribedHandlers + Decorator readers.
        """
        from .readers import DecoratorTagReader, DescribedHandlersTagReader

        return cls([DescribedHandlersTagReader(), DecoratorTagReader()])

    @property
    def name(self) -> str:
        return "chain"

    def add_reader(self, reader: BaseTagReader) -> ChainedTagReader:
        """Append a reader to the chain.

        Returns:
            Self for method chaining.
        """
        self._readers.append(reader)
        return self

    @property
    def reader_names(self) -> list[str]:
        """Names of readers in lookup order."""
        return [r.name for r in self._readers]

    def get_metadata(self, instance: Any, method_name: str) -> HandlerMetadata | None:
        for reader in self._readers:
            metadata = reader.get_metadata(instance, method_name)
            if metadata is not None:
                return metadata
        return None

    def __len__(self) -> int:
        return len(self._readers)


__all__ = ["ChainedTagReader"]
