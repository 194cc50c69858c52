"""
Exceptions for the Chain Gateway module.
"""
from enum import Enum
from typing import Optional


class ChainErrorCode(str, Enum):
    """
    Error codes attached to gateway failures.

    Callers use these to tell transient read problems apart from terminal
    submission failures without matching on message text.
    """
    UNKNOWN_UNSPECIFIED = "UNKNOWN_UNSPECIFIED"
    READ_FAILED = "READ_FAILED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    WOULD_REVERT = "WOULD_REVERT"
    SIGNING_FAILED = "SIGNING_FAILED"
    BROADCAST_FAILED = "BROADCAST_FAILED"
    RECEIPT_TIMEOUT = "RECEIPT_TIMEOUT"
    BAD_SIGNATURE = "BAD_SIGNATURE"


class ChainGatewayError(Exception):
    """Base exception for Chain Gateway errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.error_code = error_code or ChainErrorCode.UNKNOWN_UNSPECIFIED
        super().__init__(message)


class ChainReadError(ChainGatewayError):
    """Raised when a contract read cannot complete. Transient; the caller decides on retries."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message, error_code or ChainErrorCode.READ_FAILED)


class TransferSubmissionError(ChainGatewayError):
    """Raised when a transfer cannot be submitted. Terminal for that transfer."""
    pass


class ConfirmationTimeoutError(ChainGatewayError):
    """Raised when the receipt for a submitted transfer does not arrive in time."""

    def __init__(self, message: str, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(message, ChainErrorCode.RECEIPT_TIMEOUT)


class SignatureError(ChainGatewayError):
    """Raised when a signature cannot be parsed or recovered."""

    def __init__(self, message: str):
        super().__init__(message, ChainErrorCode.BAD_SIGNATURE)
