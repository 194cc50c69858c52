"""
JSON file record store for single-host deployments and the CLI.
"""
import json
import logging
import os
import stat
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

import portalocker

from ..models import Intent, Schedule, Transfer
from .base import Records, RecordStore

logger = logging.getLogger(__name__)

_EMPTY_DOCUMENT = {"intents": {}, "transfers": {}, "schedules": {}}


class JsonFileStore(RecordStore):
    """Thread-safe and process-safe record store kept in one JSON document"""

    def __init__(self, store_path: Optional[str] = None, lock_timeout: float = 10):
        """
        Initialize the store.

        Args:
            store_path: Optional custom path for the JSON document
            lock_timeout: Seconds to wait for the file lock
        """
        # Use PULSE_STORE_PATH env var or default to ~/.pulseremit/store.json
        if store_path:
            self.store_path = Path(store_path)
        else:
            default_path = os.environ.get(
                "PULSE_STORE_PATH",
                os.path.expanduser("~/.pulseremit/store.json")
            )
            self.store_path = Path(default_path)
        self.lock_timeout = lock_timeout
        self._thread_lock = threading.RLock()

        self._ensure_file()

    def _ensure_file(self):
        """Ensure the store directory and file exist with owner-only permissions"""
        directory = self.store_path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            if os.name == 'posix':
                os.chmod(directory, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)  # 0700

        if not self.store_path.exists():
            with portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
                if not self.store_path.exists():
                    self._write_document(dict(_EMPTY_DOCUMENT))

        if os.name == 'posix':
            os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def _get_lock_path(self) -> str:
        """Get path for the lock file"""
        return str(self.store_path) + '.lock'

    def _read_document(self) -> Dict[str, Any]:
        try:
            with open(self.store_path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return dict(_EMPTY_DOCUMENT)
        except json.JSONDecodeError as e:
            # A corrupt store must not be silently replaced with an empty one
            raise ValueError(f"Store file {self.store_path} is not valid JSON: {e}") from e
        for section in _EMPTY_DOCUMENT:
            data.setdefault(section, {})
        return data

    def _write_document(self, data: Dict[str, Any]):
        tmp_path = self.store_path.with_suffix(self.store_path.suffix + '.tmp')
        # Owner-only from creation; the replace carries this mode onto the store
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
        if os.name == 'posix':
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600 even if the tmp file pre-existed
        os.replace(tmp_path, self.store_path)

    @staticmethod
    def _load(data: Dict[str, Any]) -> Records:
        return Records(
            intents={k: Intent.model_validate(v) for k, v in data["intents"].items()},
            transfers={k: Transfer.model_validate(v) for k, v in data["transfers"].items()},
            schedules={k: Schedule.model_validate(v) for k, v in data["schedules"].items()},
        )

    @staticmethod
    def _dump(records: Records) -> Dict[str, Any]:
        return {
            "intents": {k: v.model_dump(mode="json") for k, v in records.intents.items()},
            "transfers": {k: v.model_dump(mode="json") for k, v in records.transfers.items()},
            "schedules": {k: v.model_dump(mode="json") for k, v in records.schedules.items()},
        }

    @contextmanager
    def _access(self, write: bool = False) -> Iterator[Records]:
        with self._thread_lock:
            with portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
                records = self._load(self._read_document())
                yield records
                if write:
                    self._write_document(self._dump(records))

    def clear(self):
        """Drop all records (for testing)"""
        with self._thread_lock:
            with portalocker.Lock(self._get_lock_path(), timeout=self.lock_timeout):
                self._write_document(dict(_EMPTY_DOCUMENT))
