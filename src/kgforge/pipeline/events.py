"""
Engine event stream.

Observers (dashboards, status indicators, the /events endpoint) subscribe
without the engine knowing who they are.

Usage:
    bus = EventBus()
    await bus.publish(EngineEvent(EventType.NOTICE, "Engine started"))

    async for event in bus.subscribe():
        handle_event(event)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncGenerator, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of engine events."""
    STATE_CHANGED = "STATE_CHANGED"
    NOTICE = "NOTICE"
    ERROR = "ERROR"


@dataclass
class EngineEvent:
    """Event emitted by the engine or the router."""
    event_type: EventType
    message: str = ""
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "event_type": self.event_type.value,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBus:
    """Fan-out of engine events to any number of subscribers."""

    def __init__(self):
        self._subscribers: list[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: EngineEvent) -> None:
        """
        Publish an event to every current subscriber.

        Args:
            event: Event to publish
        """
        for subscriber_queue in list(self._subscribers):
            subscriber_queue.put_nowait(event)

    async def subscribe(
        self, heartbeat: Optional[float] = None
    ) -> AsyncGenerator[Optional[EngineEvent], None]:
        """
        Subscribe to engine events.

        Args:
            heartbeat: If set, yield None after this many idle seconds

        Yields:
            EngineEvent objects as they are published, or None on an idle heartbeat
        """
        subscriber_queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(subscriber_queue)

        try:
            while True:
                if heartbeat is None:
                    yield await subscriber_queue.get()
                    continue
                try:
                    event = await asyncio.wait_for(subscriber_queue.get(), heartbeat)
                except asyncio.TimeoutError:
                    event = None
                yield event
        finally:
            self._subscribers.remove(subscriber_queue)
