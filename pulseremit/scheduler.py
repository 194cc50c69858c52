"""
ScheduleProcessor - re-issues recurring transfers on a timer.

Every tick fetches the active schedules whose next_run has passed and runs
them one at a time through the TransferExecutor. Runs for the same user
share one vault nonce, so they are never submitted concurrently.

Monthly schedules keep the day of month they were created on (the anchor
day). When the target month is shorter the run happens on that month's last
day, and the following month returns to the anchor: a schedule created on
Jan 31 runs Feb 28 (29 in leap years), Mar 31, Apr 30, May 31, ...
A run that happens late still counts toward the month it was due in, so
the next run lands in the following month rather than skipping one.
"""
import calendar
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .clock import Clock, SystemClock
from .exceptions import (
    IntentNotFoundError, ScheduleNotFoundError, TransferFailedError, ValidationError,
)
from .executor import TransferExecutor
from .gateway._rate_limited_log import rate_limited_log
from .models import (
    Frequency, IntentStatus, Schedule, SignedAuthorization, TransferRequest,
    TransferStatus,
)
from .store import Store
from .utils import usd_to_wei

DEFAULT_INTERVAL = 3600


def add_months(value: datetime, months: int, anchor_day: Optional[int] = None) -> datetime:
    """
    Move `value` by whole calendar months, landing on `anchor_day`
    (default: value's own day) clamped to the target month's length.
    """
    day = anchor_day or value.day
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day, last_day))


def next_run_after(
    frequency: Union[Frequency, str],
    last_run: datetime,
    anchor_day: Optional[int] = None,
    previous_due: Optional[datetime] = None
) -> datetime:
    """
    When a schedule runs next, one period after `last_run`.

    Monthly runs step from the month the run was due in, not the month it
    actually happened in, so a late run (or a retry that drifts past the end
    of the month) lands in the following month instead of skipping it. The
    result is always after `last_run`.

    Args:
        frequency: daily, weekly or monthly
        last_run: Time of the run just completed (or schedule creation)
        anchor_day: Day of month monthly schedules aim for
        previous_due: The next_run this run fulfilled, if any

    Raises:
        ValueError: For an unknown frequency
    """
    frequency = Frequency(frequency)
    if frequency == Frequency.DAILY:
        return last_run + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return last_run + timedelta(days=7)
    if previous_due is None:
        return add_months(last_run, 1, anchor_day)

    day = anchor_day or previous_due.day
    due_month = last_run.replace(year=previous_due.year, month=previous_due.month, day=1)
    months = 1
    candidate = add_months(due_month, months, day)
    while candidate <= last_run:
        months += 1
        candidate = add_months(due_month, months, day)
    return candidate


@dataclass
class ScanReport:
    """What happened during one due-scan"""
    started_at: datetime
    due: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


class ScheduleProcessor:
    """
    Runs due schedules and manages schedule lifecycle.

    A failed run leaves the schedule active with next_run unchanged, so the
    next tick retries it. Cancellation is terminal.
    """

    def __init__(
        self,
        executor: TransferExecutor,
        store: Store,
        clock: Optional[Clock] = None,
        interval: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            executor: Executor used for every run
            store: Persistence for schedules and intents
            clock: Time source (defaults to the executor's clock)
            interval: Seconds between timer ticks (defaults to
                config.scheduler_interval, normally hourly)
            logger: Optional logger instance
        """
        self.executor = executor
        self.store = store
        self.clock = clock or executor.clock or SystemClock()
        self.interval = interval or getattr(executor.config, "scheduler_interval", DEFAULT_INTERVAL)
        self.logger = logger or logging.getLogger(__name__)

        self._scan_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # Lifecycle

    def create_schedule(
        self,
        user_id: str,
        intent_id: str,
        frequency: Union[Frequency, str],
        amount: str,
        recipient: str,
        signature: str,
        *,
        user_address: str,
        signed_request: Optional[TransferRequest] = None
    ) -> Schedule:
        """
        Create an active schedule and mark its intent as scheduled.

        Args:
            user_id: Owner of the schedule
            intent_id: Recurring intent the schedule fulfils
            frequency: daily, weekly or monthly
            amount: Decimal token amount per run (e.g. "25.50")
            recipient: Recipient address
            signature: User signature reused on every run
            user_address: Address that produced the signature
            signed_request: The exact request the signature covers, if known

        Returns:
            The stored schedule

        Raises:
            ValidationError: If any field is malformed
            IntentNotFoundError: If the intent does not exist
        """
        if self.store.get_intent(intent_id) is None:
            raise IntentNotFoundError(f"Intent {intent_id} not found")

        now = self.clock.now()
        try:
            frequency = Frequency(frequency)
            # Validates the signature encoding and signer address up front
            SignedAuthorization(signature=signature, signer_address=user_address, request=signed_request)
            schedule = Schedule(
                user_id=user_id,
                user_address=user_address,
                intent_id=intent_id,
                frequency=frequency,
                amount=usd_to_wei(amount),
                recipient=recipient,
                signature=signature,
                signed_request=signed_request,
                next_run=next_run_after(frequency, now, now.day),
                anchor_day=now.day,
                created_at=now,
            )
        except (PydanticValidationError, ValueError) as e:
            raise ValidationError(f"Invalid schedule: {e}") from e

        if signed_request is not None and (
            signed_request.recipient != schedule.recipient or signed_request.amount != schedule.amount
        ):
            raise ValidationError("Signed request does not match the schedule recipient and amount")

        self.store.save_schedule(schedule)
        self.store.update_intent_status(intent_id, IntentStatus.SCHEDULED)
        self.logger.info(
            f"Schedule created: {schedule.id} frequency={frequency.value} next_run={schedule.next_run.isoformat()}"
        )
        return schedule

    def cancel_schedule(self, schedule_id: str) -> Schedule:
        """
        Deactivate a schedule permanently.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = self.store.deactivate_schedule(schedule_id)
        self.logger.info(f"Schedule cancelled: {schedule_id}")
        return schedule

    # Processing

    def process_due(self) -> ScanReport:
        """
        Run every due schedule once, in next_run order.

        Returns a skipped report if another scan is already running.
        """
        report = ScanReport(started_at=self.clock.now())
        if not self._scan_lock.acquire(blocking=False):
            self.logger.warning("Previous schedule scan still running; skipping this tick")
            report.skipped = True
            return report

        try:
            due = self.store.find_due_schedules(report.started_at)
            report.due = len(due)
            self.logger.info(f"Found {len(due)} due schedules")

            for schedule in due:
                try:
                    self._run_schedule(schedule)
                except Exception as e:
                    error = f"{type(e).__name__}: {e}"
                    report.failed[schedule.id] = error
                    self._record_failure(schedule, error)
                else:
                    report.succeeded.append(schedule.id)
        finally:
            self._scan_lock.release()

        self.logger.info(
            f"Schedule scan finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
        )
        return report

    def _run_schedule(self, schedule: Schedule):
        self.logger.info(f"Executing scheduled transfer {schedule.id}")

        intent = self.store.get_intent(schedule.intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent {schedule.intent_id} not found")

        authorization = SignedAuthorization(
            request=schedule.signed_request or self._rebuild_request(schedule),
            signature=schedule.signature,
            signer_address=schedule.user_address,
        )
        result = self.executor.execute(intent, authorization, update_intent=False)
        if result.status != TransferStatus.CONFIRMED:
            raise TransferFailedError(f"Transfer {result.tx_hash} {result.status.value}")

        last_run = self.clock.now()
        updated = self.store.mark_schedule_run(
            schedule.id,
            last_run=last_run,
            next_run=next_run_after(
                schedule.frequency, last_run, schedule.anchor_day, previous_due=schedule.next_run
            ),
        )
        self.logger.info(
            f"Scheduled transfer executed: {schedule.id} tx={result.tx_hash} "
            f"next_run={updated.next_run.isoformat()}"
        )

    def _rebuild_request(self, schedule: Schedule) -> TransferRequest:
        deadline = int(self.clock.now().timestamp()) + self.executor.config.deadline_window
        return TransferRequest(
            recipient=schedule.recipient,
            amount=schedule.amount,
            nonce=self.executor.gateway.read_nonce(schedule.user_address),
            deadline=deadline,
        )

    def _record_failure(self, schedule: Schedule, error: str):
        try:
            updated = self.store.record_schedule_failure(schedule.id, error)
            attempts = updated.failure_count
        except ScheduleNotFoundError:
            attempts = schedule.failure_count + 1
        except Exception as e:
            # The scan goes on; next_run is untouched so the schedule is retried
            attempts = schedule.failure_count + 1
            self.logger.error(f"Could not record failure of schedule {schedule.id}: {e}")
        self.logger.debug(f"Schedule {schedule.id} failed (attempt {attempts}): {error}")
        rate_limited_log(
            f"Failed to execute schedule {schedule.id} ({attempts} consecutive failures): {error}",
            level="error",
            logger_instance=self.logger,
            key=f"schedule:{schedule.id}",
        )

    # Timer

    def tick(self) -> Optional[ScanReport]:
        """One timer firing; errors are logged so the timer keeps running."""
        self.logger.info("Running scheduled transfers check...")
        try:
            return self.process_due()
        except Exception as e:
            self.logger.error(f"Failed to process scheduled transfers: {e}")
            return None

    def seconds_until_next_tick(self) -> float:
        """Time until the next multiple of `interval` (top of the hour by default)."""
        now = self.clock.now().timestamp()
        remaining = self.interval - (now % self.interval)
        return remaining if remaining > 0 else float(self.interval)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the background timer thread."""
        if self.running:
            self.logger.warning("Scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="pulseremit-scheduler", daemon=True)
        self._thread.start()
        self.logger.info(f"Scheduler started - checking every {self.interval}s")

    def stop(self, timeout: Optional[float] = None):
        """Stop the timer and wait for an in-flight scan to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            self.logger.info("Scheduler stopped")

    def _run_loop(self):
        while not self._stop_event.wait(self.seconds_until_next_tick()):
            self.tick()
