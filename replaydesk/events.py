"""Events published from the replay engine to the view layer."""

import asyncio
import logging
from abc import ABC
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from replaydesk.time_utils import now_ms

logger = logging.getLogger(__name__)


def event(cls):
    return dataclass(frozen=True, slots=True)(cls)


@dataclass(frozen=True, slots=True, kw_only=True)
class DomainEvent(ABC):
    timestamp: int = field(default_factory=now_ms)


Handler = Callable[[DomainEvent], None | Awaitable[None]]


class EventDispatcher:
    """Async event dispatcher owned by one dashboard.

    Handlers can be sync or async functions. A handler subscribed to a base
    event class also receives its subclasses. Exceptions in handlers are
    logged but don't stop dispatch to other handlers.
    """

    def __init__(self):
        self._handlers: dict[type[DomainEvent], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> Callable[[], None]:
        """Register a handler for an event type.

        Returns:
            A callable that removes the subscription again.
        """
        self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        """Unregister a handler from an event type."""
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)

    def _handlers_for(self, event: DomainEvent) -> list[Handler]:
        handlers: list[Handler] = []
        for cls in type(event).__mro__:
            handlers.extend(self._handlers.get(cls, ()))
        return handlers

    async def publish(self, event: DomainEvent) -> None:
        """Dispatch event to all registered handlers, in subscription order."""
        for handler in self._handlers_for(event):
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(
                    "Event handler %s failed for %s: %s",
                    getattr(handler, "__name__", repr(handler)),
                    event.__class__.__name__,
                    e,
                    exc_info=True,
                )
