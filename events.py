"""Plain callback pub/sub used by the timeline and the data manager."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ground_data import GroundData

DRAG_START = "drag-start"
DRAG_END = "drag-end"
TIME_CHANGE = "time-change"

DATA_LOADED = "data-loaded"
DATA_WARNING = "data-warning"
DATA_ERROR = "data-error"

SOURCE_USER = "user"
SOURCE_AUTO = "auto"


@dataclass(frozen=True)
class DragEvent:
    timestamp: datetime


@dataclass(frozen=True)
class TimeChangeEvent:
    timestamp: datetime
    source: str  # SOURCE_USER or SOURCE_AUTO
    immediate: bool


@dataclass(frozen=True)
class DataEvent:
    timestamp: datetime
    key: str
    data: Optional[GroundData] = None
    reason: Optional[str] = None


Listener = Callable[[Any], None]


class EventEmitter:
    """
    Fan-out of events to registered callbacks.

    Dispatch works on a snapshot of the listeners, so a callback may
    unsubscribe itself (or others) while an event is being delivered.
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event_type: str, callback: Listener) -> Callable[[], None]:
        """
        Register a callback for an event type.

        Returns:
            Function that removes the registration when called
        """
        self._listeners.setdefault(event_type, []).append(callback)
        return lambda: self.off(event_type, callback)

    def off(self, event_type: str, callback: Listener) -> None:
        """Remove a callback. Unknown callbacks are ignored."""
        listeners = self._listeners.get(event_type)
        if not listeners:
            return
        try:
            listeners.remove(callback)
        except ValueError:
            pass

    def emit(self, event_type: str, payload: Any) -> int:
        """
        Deliver payload to every callback registered for event_type.

        Returns:
            Number of callbacks that received the event
        """
        delivered = 0
        for callback in list(self._listeners.get(event_type, ())):
            try:
                callback(payload)
                delivered += 1
            except Exception:
                logging.exception(f"Listener for '{event_type}' raised")
        return delivered

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def clear(self) -> None:
        self._listeners.clear()
