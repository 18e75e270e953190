"""Declarative handler tagging.

Methods are tagged with ``@event_handler``; tag readers turn those tags
(or an explicit ``describe_handlers()`` declaration) into HandlerMetadata
for the metadata explorer.

Custom Readers:
Extend BaseTagReader and add it to a chain:

    from event_discovery.tagging import BaseTagReader, ChainedTagReader

    chain = ChainedTagReader.default().add_reader(MyReader())
    explorer = MetadataExplorer(tag_reader=chain)
"""

from __future__ import annotations

from .base_reader import BaseTagReader
from .decorators import (
    auto_events,
    event_handler,
    get_handler_metadata,
    is_auto_events,
)
from .reader_chain import ChainedTagReader
from .readers import DecoratorTagReader, DescribedHandlersTagReader

__all__ = [
    # Decorators
    "event_handler",
    "auto_events",
    "get_handler_metadata",
    "is_auto_events",
    # Readers
    "BaseTagReader",
    "ChainedTagReader",
    "DecoratorTagReader",
    "DescribedHandlersTagReader",
]
