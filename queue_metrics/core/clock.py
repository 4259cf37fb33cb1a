"""Clock abstraction.

Every component takes a clock so window-boundary and decay tests can freeze
and advance time deterministically. Timestamps are Unix seconds (float).
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional


class Clock(ABC):
    """Abstract interface for the engine clock."""

    @abstractmethod
    def now(self) -> float:
        """Current Unix timestamp."""

    def utcnow(self) -> datetime:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc)


class SystemClock(Clock):
    """Production clock using actual system time."""

    def now(self) -> float:
        return time.time()


class FrozenClock(Clock):
    """Mock clock for testing. Only moves when told to."""

    def __init__(self, initial: Optional[float] = None):
        self._now = float(initial if initial is not None else time.time())
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._now

    def set(self, timestamp: float) -> None:
        with self._lock:
            self._now = float(timestamp)

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += float(seconds)
