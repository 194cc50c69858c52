"""
PulseRemit - signed vault transfers and recurring schedules.
"""
from .version import __version__
from .config import VaultConfig
from .digest import build_digest, hash_struct, TRANSFER_REQUEST_TYPEHASH
from .executor import TransferExecutor
from .gateway import ChainGateway
from .models import (
    Frequency, Intent, IntentAction, IntentStatus, Schedule, SignedAuthorization,
    Transfer, TransferRequest, TransferResult, TransferStatus,
)
from .scheduler import ScheduleProcessor, ScanReport, next_run_after
from .store import InMemoryStore, JsonFileStore
from .exceptions import (
    PulseRemitError, ValidationError, IntentNotFoundError, ScheduleNotFoundError,
    DuplicateExecutionError, PreflightError, InsufficientBalanceError,
    DeadlineExpiredError, SignerMismatchError, StaleNonceError, AgentNotVerifiedError,
    TransferFailedError,
)

__all__ = [
    "__version__",
    "VaultConfig",
    "build_digest", "hash_struct", "TRANSFER_REQUEST_TYPEHASH",
    "TransferExecutor", "ChainGateway",
    "Frequency", "Intent", "IntentAction", "IntentStatus", "Schedule", "SignedAuthorization",
    "Transfer", "TransferRequest", "TransferResult", "TransferStatus",
    "ScheduleProcessor", "ScanReport", "next_run_after",
    "InMemoryStore", "JsonFileStore",
    "PulseRemitError", "ValidationError", "IntentNotFoundError", "ScheduleNotFoundError",
    "DuplicateExecutionError", "PreflightError", "InsufficientBalanceError",
    "DeadlineExpiredError", "SignerMismatchError", "StaleNonceError", "AgentNotVerifiedError",
    "TransferFailedError",
]
