"""
Record-keeping logic shared by the store backends.

Backends only decide where the records live and how access is serialized;
every mutation rule (tx_hash uniqueness, terminal transfers, schedule
write-back) is implemented once here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import ContextManager, Dict, List, Optional

from ..exceptions import IntentNotFoundError, ScheduleNotFoundError
from ..models import Intent, IntentStatus, Schedule, Transfer, TransferStatus
from ..utils import short_hex

logger = logging.getLogger(__name__)


@dataclass
class Records:
    """Everything a store holds; transfers are keyed by tx_hash."""
    intents: Dict[str, Intent] = field(default_factory=dict)
    transfers: Dict[str, Transfer] = field(default_factory=dict)
    schedules: Dict[str, Schedule] = field(default_factory=dict)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class RecordStore:
    """
    Base class implementing IntentStore, TransferStore and ScheduleStore.

    Subclasses provide `_access(write)`, a context manager yielding the
    `Records` under whatever lock the backend needs. Records handed to
    callers are copies; changes only land through the methods below.
    """

    def _access(self, write: bool = False) -> ContextManager[Records]:
        raise NotImplementedError

    # Intents

    def save_intent(self, intent: Intent) -> Intent:
        with self._access(write=True) as records:
            records.intents[intent.id] = _copy(intent)
        return intent

    def get_intent(self, intent_id: str) -> Optional[Intent]:
        with self._access() as records:
            return _copy(records.intents.get(intent_id))

    def update_intent_status(
        self,
        intent_id: str,
        status: IntentStatus,
        *,
        error_message: Optional[str] = None,
        executed_at: Optional[datetime] = None
    ) -> Intent:
        """
        Move an intent to `status`.

        Raises:
            IntentNotFoundError: If the intent does not exist
        """
        with self._access(write=True) as records:
            intent = records.intents.get(intent_id)
            if intent is None:
                raise IntentNotFoundError(f"Intent {intent_id} not found")
            updates = {"status": status, "error_message": error_message}
            if executed_at is not None:
                updates["executed_at"] = executed_at
            records.intents[intent_id] = intent.model_copy(update=updates)
            return _copy(records.intents[intent_id])

    # Transfers

    def record_transfer(self, transfer: Transfer) -> Transfer:
        """
        Insert a transfer keyed by its tx_hash.

        A second record for a hash that is already stored is ignored and the
        existing record is returned.
        """
        with self._access(write=True) as records:
            existing = records.transfers.get(transfer.tx_hash)
            if existing is not None:
                logger.debug(f"Transfer {short_hex(transfer.tx_hash)} already recorded")
                return _copy(existing)
            records.transfers[transfer.tx_hash] = _copy(transfer)
            return _copy(transfer)

    def get_transfer(self, tx_hash: str) -> Optional[Transfer]:
        with self._access() as records:
            return _copy(records.transfers.get(tx_hash))

    def update_transfer(
        self,
        tx_hash: str,
        status: TransferStatus,
        *,
        block_number: Optional[int] = None,
        gas_used: Optional[int] = None,
        error_message: Optional[str] = None,
        confirmed_at: Optional[datetime] = None
    ) -> Transfer:
        """
        Write the confirmation outcome back to a transfer.

        A transfer that already reached confirmed/failed keeps its status;
        only metadata it is still missing is filled in.

        Raises:
            KeyError: If no transfer with this hash was recorded
        """
        with self._access(write=True) as records:
            transfer = records.transfers.get(tx_hash)
            if transfer is None:
                raise KeyError(f"No transfer recorded for {tx_hash}")

            values = {
                "block_number": block_number,
                "gas_used": gas_used,
                "error_message": error_message,
                "confirmed_at": confirmed_at,
            }
            if transfer.is_terminal:
                if status != transfer.status:
                    logger.warning(
                        f"Ignoring {status.value} for {short_hex(tx_hash)}: "
                        f"already {transfer.status.value}"
                    )
                updates = {
                    key: value for key, value in values.items()
                    if value is not None and getattr(transfer, key) is None
                }
            else:
                updates = {key: value for key, value in values.items() if value is not None}
                updates["status"] = status

            records.transfers[tx_hash] = transfer.model_copy(update=updates)
            return _copy(records.transfers[tx_hash])

    def list_transfers(self, intent_id: Optional[str] = None) -> List[Transfer]:
        with self._access() as records:
            transfers = [
                t for t in records.transfers.values()
                if intent_id is None or t.intent_id == intent_id
            ]
            return [_copy(t) for t in sorted(transfers, key=lambda t: t.created_at)]

    # Schedules

    def save_schedule(self, schedule: Schedule) -> Schedule:
        with self._access(write=True) as records:
            records.schedules[schedule.id] = _copy(schedule)
        return schedule

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self._access() as records:
            return _copy(records.schedules.get(schedule_id))

    def list_schedules(self, user_id: Optional[str] = None) -> List[Schedule]:
        with self._access() as records:
            schedules = [
                s for s in records.schedules.values()
                if user_id is None or s.user_id == user_id
            ]
            return [_copy(s) for s in sorted(schedules, key=lambda s: s.created_at)]

    def find_due_schedules(self, now: datetime) -> List[Schedule]:
        """Active schedules with next_run <= now, earliest first."""
        with self._access() as records:
            due = [
                s for s in records.schedules.values()
                if s.is_active and s.next_run <= now
            ]
            return [_copy(s) for s in sorted(due, key=lambda s: (s.next_run, s.created_at))]

    def _require_schedule(self, records: Records, schedule_id: str) -> Schedule:
        schedule = records.schedules.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule {schedule_id} not found")
        return schedule

    def mark_schedule_run(self, schedule_id: str, last_run: datetime, next_run: datetime) -> Schedule:
        """
        Record a successful run.

        Only the run bookkeeping is written; `is_active` is read from the
        stored record so a cancellation made during the run holds.
        """
        with self._access(write=True) as records:
            schedule = self._require_schedule(records, schedule_id)
            records.schedules[schedule_id] = schedule.model_copy(update={
                "last_run": last_run,
                "next_run": next_run,
                "failure_count": 0,
                "last_error": None,
            })
            return _copy(records.schedules[schedule_id])

    def record_schedule_failure(self, schedule_id: str, error: str) -> Schedule:
        """Count a failed run; next_run and is_active stay as they are."""
        with self._access(write=True) as records:
            schedule = self._require_schedule(records, schedule_id)
            records.schedules[schedule_id] = schedule.model_copy(update={
                "failure_count": schedule.failure_count + 1,
                "last_error": error,
            })
            return _copy(records.schedules[schedule_id])

    def deactivate_schedule(self, schedule_id: str) -> Schedule:
        with self._access(write=True) as records:
            schedule = self._require_schedule(records, schedule_id)
            records.schedules[schedule_id] = schedule.model_copy(update={"is_active": False})
            return _copy(records.schedules[schedule_id])
