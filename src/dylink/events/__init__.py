"""Lifecycle event bus."""

from dylink.events.bus import EventBus, emit_optional
from dylink.events.types import Event, EventType

__all__ = ["Event", "EventBus", "EventType", "emit_optional"]
