"""Lifecycle event bus.

Compile, load and reload components publish here when given a bus. Consumers
either hold a queue (optionally filtered by event type or module) or register
a callback. The bus keeps a short history for status displays.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from dylink.events.types import Event, EventType

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100


@dataclass
class _Subscription:
    queue: asyncio.Queue[Event]
    event_types: frozenset[EventType] = field(default_factory=frozenset)
    module: str | None = None

    def accepts(self, event: Event) -> bool:
        if self.event_types and event.type not in self.event_types:
            return False
        return self.module is None or event.module == self.module


class EventBus:
    """Fan-out of lifecycle events to queues and callbacks."""

    def __init__(self, history_size: int = HISTORY_SIZE) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self._callbacks: list[Callable[[Event], Any]] = []
        self._history: deque[Event] = deque(maxlen=history_size)

    async def subscribe(
        self,
        subscriber_id: str,
        event_types: Iterable[EventType] | None = None,
        module: str | None = None,
    ) -> asyncio.Queue[Event]:
        """Return a queue receiving matching events from now on.

        Args:
            subscriber_id: Replaces any existing subscription with this ID.
            event_types: Only deliver these types. All types when omitted.
            module: Only deliver events about this module.
        """
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscriptions[subscriber_id] = _Subscription(queue, frozenset(event_types or ()), module)
        logger.debug(f"Subscriber {subscriber_id} connected")
        return queue

    async def unsubscribe(self, subscriber_id: str) -> None:
        if self._subscriptions.pop(subscriber_id, None) is not None:
            logger.debug(f"Subscriber {subscriber_id} disconnected")

    def add_callback(self, callback: Callable[[Event], Any]) -> None:
        """Call callback for every event. Coroutine results are awaited."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[Event], Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def publish(self, event: Event) -> None:
        """Deliver event. A failing callback is logged and the rest still run."""
        logger.debug(f"Event {event.type.value}" + (f" ({event.module})" if event.module else ""))
        self._history.append(event)

        for subscription in list(self._subscriptions.values()):
            if subscription.accepts(event):
                subscription.queue.put_nowait(event)

        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Event callback failed on {event.type.value}: {e}")

    async def emit(
        self,
        event_type: EventType,
        data: dict[str, Any] | None = None,
        module: str | None = None,
    ) -> Event:
        event = Event(type=event_type, data=data or {}, module=module)
        await self.publish(event)
        return event

    def recent(self, limit: int = 20, event_type: EventType | None = None) -> list[Event]:
        """Most recent events, oldest first."""
        events = [e for e in self._history if event_type is None or e.type == event_type]
        return events[-limit:]

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


async def emit_optional(
    bus: EventBus | None,
    event_type: EventType,
    data: dict[str, Any] | None = None,
    module: str | None = None,
) -> None:
    """Emit on bus when one is configured."""
    if bus is not None:
        await bus.emit(event_type, data, module)
