"""
Exceptions raised by the transfer executor and schedule processor.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable codes for conditions reported to the route layer."""
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTENT_NOT_FOUND = "INTENT_NOT_FOUND"
    SCHEDULE_NOT_FOUND = "SCHEDULE_NOT_FOUND"
    DUPLICATE_EXECUTION = "DUPLICATE_EXECUTION"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DEADLINE_EXPIRED = "DEADLINE_EXPIRED"
    SIGNER_MISMATCH = "SIGNER_MISMATCH"
    STALE_NONCE = "STALE_NONCE"
    AGENT_NOT_VERIFIED = "AGENT_NOT_VERIFIED"
    TRANSFER_FAILED = "TRANSFER_FAILED"


class PulseRemitError(Exception):
    """Base exception for PulseRemit errors."""
    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(PulseRemitError):
    """Raised for malformed input, before any chain interaction."""
    code = ErrorCode.VALIDATION_FAILED


class IntentNotFoundError(PulseRemitError):
    """Raised when an intent id does not resolve."""
    code = ErrorCode.INTENT_NOT_FOUND


class ScheduleNotFoundError(PulseRemitError):
    """Raised when a schedule id does not resolve."""
    code = ErrorCode.SCHEDULE_NOT_FOUND


class DuplicateExecutionError(PulseRemitError):
    """Raised when an intent has already been executed."""
    code = ErrorCode.DUPLICATE_EXECUTION


class PreflightError(PulseRemitError):
    """
    Base class for checks that fail before submission.

    These are terminal for the attempt: nothing was broadcast and no gas
    was spent.
    """
    pass


class InsufficientBalanceError(PreflightError):
    """Raised when the vault balance does not cover the requested amount."""
    code = ErrorCode.INSUFFICIENT_BALANCE

    def __init__(self, message: str, balance: int, amount: int):
        self.balance = balance
        self.amount = amount
        super().__init__(message)


class DeadlineExpiredError(PreflightError):
    """Raised when the signed request's deadline has already passed."""
    code = ErrorCode.DEADLINE_EXPIRED


class SignerMismatchError(PreflightError):
    """Raised when the signature recovers to someone other than the expected signer."""
    code = ErrorCode.SIGNER_MISMATCH

    def __init__(self, message: str, expected: str, recovered: str):
        self.expected = expected
        self.recovered = recovered
        super().__init__(message)


class StaleNonceError(PreflightError):
    """Raised when the signed nonce no longer matches the vault's counter."""
    code = ErrorCode.STALE_NONCE

    def __init__(self, message: str, signed_nonce: int, current_nonce: int):
        self.signed_nonce = signed_nonce
        self.current_nonce = current_nonce
        super().__init__(message)


class AgentNotVerifiedError(PreflightError):
    """Raised when the agent does not own its identity token."""
    code = ErrorCode.AGENT_NOT_VERIFIED


class TransferFailedError(PulseRemitError):
    """Raised when a scheduled run's transfer was included but reverted."""
    code = ErrorCode.TRANSFER_FAILED
