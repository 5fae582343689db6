# ABOUTME: Server-side ingestion clock that never repeats or goes backwards.
# ABOUTME: Orders attempts independently of client-supplied time.

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

_TICK = timedelta(microseconds=1)


class MonotonicClock:
    """Wall-clock UTC timestamps bumped by one microsecond whenever the wall clock stalls or steps back."""

    def __init__(self, wall: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self._wall = wall
        self._last = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._wall()
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            return current
