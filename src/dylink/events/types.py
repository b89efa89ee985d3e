"""Event type definitions for the event bus."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Lifecycle events emitted by the compile, load and reload pipelines."""

    # Compile events
    COMPILE_STARTED = "compile.started"
    COMPILE_COMPLETED = "compile.completed"
    COMPILE_FAILED = "compile.failed"
    ARTIFACT_WRITTEN = "artifact.written"

    # Load events
    MODULES_LOADED = "modules.loaded"

    # Reload events
    RELOAD_STARTED = "reload.started"
    RELOAD_COMPLETED = "reload.completed"
    RELOAD_FAILED = "reload.failed"
    ENTRY_UNRESOLVED = "entry.unresolved"


class Event(BaseModel):
    """A broadcast event."""

    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: dict[str, Any] = Field(default_factory=dict)
    module: str | None = None  # For filtering by module

    def to_json(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
            "module": self.module,
        }
