"""
In-process record store.
"""
import threading
from contextlib import contextmanager
from typing import Iterator

from .base import Records, RecordStore


class InMemoryStore(RecordStore):
    """Thread-safe store backed by dictionaries. Contents are lost on exit."""

    def __init__(self):
        self._records = Records()
        self._lock = threading.RLock()

    @contextmanager
    def _access(self, write: bool = False) -> Iterator[Records]:
        with self._lock:
            yield self._records

    def clear(self):
        """Drop all records (for testing)"""
        with self._lock:
            self._records = Records()
