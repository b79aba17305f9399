"""Event dispatcher - routes events to per-type and wildcard handlers.

The handler table has one slot per known EventType plus a wildcard slot.
Subscribing to a type the protocol does not define is a caller error.

Handlers run synchronously in registration order: type-specific handlers
first, then wildcard handlers. Handlers must not raise; an exception
propagates to the caller of dispatch() and skips the remaining handlers.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, Protocol, TypeVar

from .protocol.events import EventType

logger = logging.getLogger(__name__)

WILDCARD = "*"


class _Typed(Protocol):
    @property
    def type(self) -> str: ...


E = TypeVar("E", bound=_Typed)

EventHandler = Callable[[E], None]


def _slot_key(event_type: EventType | str) -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    if event_type == WILDCARD:
        return WILDCARD
    try:
        return EventType(event_type).value
    except ValueError as e:
        raise ValueError(f"Unknown event type: {event_type!r}") from e


class EventDispatcher(Generic[E]):
    """Typed dispatch table for session events."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler[E]]] = {t.value: [] for t in EventType}
        self._handlers[WILDCARD] = []

    def on(self, event_type: EventType | str, handler: EventHandler[E]) -> Callable[[], None]:
        """Register a handler for an event type, or "*" for every event.

        Returns:
            Unsubscribe function
        """
        key = _slot_key(event_type)
        self._handlers[key].append(handler)

        def unsubscribe() -> None:
            self.off(key, handler)

        return unsubscribe

    def off(self, event_type: EventType | str, handler: EventHandler[E]) -> None:
        """Remove a previously registered handler (no-op if absent)."""
        handlers = self._handlers[_slot_key(event_type)]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: EventType | str) -> int:
        return len(self._handlers[_slot_key(event_type)])

    def dispatch(self, event: E) -> None:
        """Deliver an event to its type slot, then to wildcard handlers."""
        # Copies so handlers can unsubscribe while being called.
        specific = list(self._handlers.get(event.type, ()))
        wildcard = list(self._handlers[WILDCARD])

        if not specific and not wildcard:
            logger.debug(f"No handlers for {event.type}")
            return

        for handler in specific:
            handler(event)
        for handler in wildcard:
            handler(event)

    def clear(self) -> None:
        for handlers in self._handlers.values():
            handlers.clear()
