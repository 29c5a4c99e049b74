"""
Schema-change events and the bus that carries them.

Whatever notices a structural change (the in-memory backend, a SQLAlchemy
engine hook, an operator) publishes a SchemaAltered event; whoever needs
to react subscribes. The bus is synchronous: publish() returns after every
handler ran, and a failing handler's exception propagates to the
publisher.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Type, Union
import logging
import threading

from .catalog.base import TableRef

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


@dataclass(frozen=True)
class SchemaAltered:
    """A table's structure changed.

    Attributes:
        table: The altered table; a plain string is resolved by the
            receiver against its own current schema
        command_tag: DDL command that caused the change
    """
    table: Union[TableRef, str]
    command_tag: str = "ALTER TABLE"


class EventBus:
    """Registry of event handlers keyed by event class."""

    def __init__(self) -> None:
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register a handler for events of ``event_type`` (and subclasses).

        Returns:
            A callable that removes the subscription
        """
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: Any) -> None:
        """Deliver an event to every matching handler, in subscription order."""
        with self._lock:
            handlers = [
                handler
                for cls in type(event).__mro__
                for handler in self._handlers.get(cls, ())
            ]
        logger.debug(
            f"Publishing {type(event).__name__} to {len(handlers)} handler(s)",
            extra={"event": type(event).__name__},
        )
        for handler in handlers:
            handler(event)

    def handler_count(self, event_type: Type) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, ()))
