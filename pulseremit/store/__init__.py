"""
Persistence ports for intents, transfers and schedules.

The executor and schedule processor depend only on these protocols; any
backend with the same methods can be passed in.
"""
from datetime import datetime
from typing import List, Optional, Protocol

from ..models import Intent, IntentStatus, Schedule, Transfer, TransferStatus
from .base import Records, RecordStore
from .json_store import JsonFileStore
from .memory import InMemoryStore


class IntentStore(Protocol):
    def save_intent(self, intent: Intent) -> Intent: ...

    def get_intent(self, intent_id: str) -> Optional[Intent]: ...

    def update_intent_status(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        error_message: Optional[str] = None,
        executed_at: Optional[datetime] = None
    ) -> Intent: ...


class TransferStore(Protocol):
    """Transfers are unique by tx_hash."""

    def record_transfer(self, transfer: Transfer) -> Transfer: ...

    def get_transfer(self, tx_hash: str) -> Optional[Transfer]: ...

    def update_transfer(
        self,
        tx_hash: str,
        status: TransferStatus,
        *,
        block_number: Optional[int] = None,
        gas_used: Optional[int] = None,
        error_message: Optional[str] = None,
        confirmed_at: Optional[datetime] = None
    ) -> Transfer: ...


class ScheduleStore(Protocol):
    def save_schedule(self, schedule: Schedule) -> Schedule: ...

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]: ...

    def find_due_schedules(self, now: datetime) -> List[Schedule]: ...

    def mark_schedule_run(self, schedule_id: str, last_run: datetime, next_run: datetime) -> Schedule: ...

    def record_schedule_failure(self, schedule_id: str, error: str) -> Schedule: ...

    def deactivate_schedule(self, schedule_id: str) -> Schedule: ...


class Store(IntentStore, TransferStore, ScheduleStore, Protocol):
    """All three ports, as the executor and scheduler use them."""
    pass


__all__ = [
    'IntentStore', 'TransferStore', 'ScheduleStore', 'Store',
    'Records', 'RecordStore', 'InMemoryStore', 'JsonFileStore',
]
