"""Built-in tag readers.

- DecoratorTagReader: metadata attached with ``@event_handler``
- DescribedHandlersTagReader: metadata declared by ``describe_handlers()``
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import Any

from ..types import HandlerMetadata
from .base_reader import BaseTagReader
from .decorators import get_handler_metadata

DESCRIBE_METHOD = "describe_handlers"


class DecoratorTagReader(BaseTagReader):
    """Reads metadata stored on the function by ``@event_handler``.

    Lookup is static (``inspect.getattr_static``) against the instance's
    type, so properties and ``__getattr__`` hooks are never triggered.
    """

    @property
    def name(self) -> str:
        return "decorator"

    def get_metadata(self, instance: Any, method_name: str) -> HandlerMetadata | None:
        attr = inspect.getattr_static(type(instance), method_name, None)
        if attr is None:
            return None
        return get_handler_metadata(attr)


class DescribedHandlersTagReader(BaseTagReader):
    """Reads metadata from an explicit ``describe_handlers()`` declaration.

    Instances opt in by returning a mapping of method name to metadata
    (a HandlerMetadata or a plain dict validated into one):

        >>> class BillingService:
        ...     def describe_handlers(self):
        ...         return {"on_invoice": {"event_type": "invoice.paid", "priority": 3}}
        ...
        ...     async def on_invoice(self, event):
        ...         ...
    """

    @property
    def name(self) -> str:
        return "described_handlers"

    def get_metadata(self, instance: Any, method_name: str) -> HandlerMetadata | None:
        describe = getattr(instance, DESCRIBE_METHOD, None)
        if not callable(describe) or method_name == DESCRIBE_METHOD:
            return None

        described = describe()
        if not isinstance(described, Mapping):
            return None

        entry = described.get(method_name)
        if entry is None:
            return None
        if isinstance(entry, HandlerMetadata):
            return entry
        return HandlerMetadata.model_validate(entry)

    @staticmethod
    def describes_handlers(instance: Any) -> bool:
        """Check whether an instance exposes ``describe_handlers()``."""
        return callable(getattr(instance, DESCRIBE_METHOD, None))


__all__ = ["DESCRIBE_METHOD", "DecoratorTagReader", "DescribedHandlersTagReader"]
