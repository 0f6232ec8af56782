"""
Synchronous registry event bus.

Events are delivered in subscription order at emission time; there is no
queue and no replay.
"""

import time
from typing import Any, Callable, Dict, List, Union
from enum import Enum
import dataclasses
import logging

logger = logging.getLogger("modulary.events")


class EventType(str, Enum):
    """Types of registry events."""
    REGISTER = "register"
    LOAD = "load"
    ERROR = "error"
    DEPENDENCY_ERROR = "dependencyError"


@dataclasses.dataclass
class Event:
    """An event emitted by the registry or loader."""
    type: EventType
    payload: Dict[str, Any] = dataclasses.field(default_factory=dict)
    timestamp: float = dataclasses.field(default_factory=time.time)


Subscriber = Callable[[Event], Any]


class EventBus:
    """Coordinator for event subscribers."""

    def __init__(self):
        self._subscribers: Dict[EventType, List[Subscriber]] = {
            event_type: [] for event_type in EventType
        }

    def subscribe(self, event: Union[EventType, str], callback: Subscriber) -> None:
        """
        Subscribe to an event type.

        Raises:
            ValueError: If the event name is unknown
        """
        event_type = EventType(event)
        self._subscribers[event_type].append(callback)

    on = subscribe

    def unsubscribe(self, event: Union[EventType, str], callback: Subscriber) -> bool:
        """Remove a subscriber. Returns False if it was not subscribed."""
        callbacks = self._subscribers[EventType(event)]
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def notify(self, event: Union[EventType, str], payload: Dict[str, Any]) -> Event:
        """Deliver an event to every subscriber of its type."""
        emitted = Event(type=EventType(event), payload=payload)
        for callback in list(self._subscribers[emitted.type]):
            try:
                callback(emitted)
            except Exception as e:
                # One failing subscriber must not block the rest
                logger.error(f"Error in {emitted.type.value} subscriber {callback!r}: {e}")
        return emitted

    def subscriber_count(self, event: Union[EventType, str]) -> int:
        return len(self._subscribers[EventType(event)])
