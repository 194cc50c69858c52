"""
Time sources for the executor and schedule processor.
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from .utils import utc_now


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as an aware UTC datetime"""
        ...


class SystemClock:
    """Wall-clock time"""

    def now(self) -> datetime:
        return utc_now()


class ManualClock:
    """A clock that only moves when told to (for tests and replays)"""

    def __init__(self, start: Optional[datetime] = None):
        start = start or utc_now()
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime):
        with self._lock:
            self._now = value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta built from `kwargs` (days=1, hours=2, ...)"""
        with self._lock:
            self._now = self._now + timedelta(**kwargs)
            return self._now
