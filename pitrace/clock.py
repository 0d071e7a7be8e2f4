"""Time source for expiry, rate limiting and record timestamps."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional


class Clock:
    """Supplies the current UTC time."""

    def now(self) -> datetime:
        raise NotImplementedError

    def timestamp(self) -> float:
        """Current time as POSIX seconds."""
        return self.now().timestamp()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock(Clock):
    """A clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (minutes=16, ...)."""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value
