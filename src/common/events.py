# ABOUTME: Defines the mastery-changed event and a small synchronous pub-sub bus.
# ABOUTME: Subscriber failures are logged and never break the commit path.

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MasteryChangedEvent:
    """Emitted on every Committed transition of the attempt pipeline."""

    student_id: str
    skill_id: str
    old_probability: Optional[float]
    new_probability: float
    confidence: float
    timestamp: datetime
    item_id: str = ""
    idempotency_key: str = ""
    degraded: bool = False


EventHandler = Callable[[MasteryChangedEvent], None]


class EventBus:
    """Thread-safe publisher; handlers run in registration order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            try:
                self._handlers.remove(handler)
                return True
            except ValueError:
                return False

    def publish(self, event: MasteryChangedEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Error in mastery-changed handler %r", handler)


class EventRecorder:
    """Handler that keeps every event in memory, for tests and the demo CLI."""

    def __init__(self) -> None:
        self.events: List[MasteryChangedEvent] = []

    def __call__(self, event: MasteryChangedEvent) -> None:
        self.events.append(event)
