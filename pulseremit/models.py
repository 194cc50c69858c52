"""
Data models for PulseRemit.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

from .utils import is_valid_address, utc_now

UINT256_MAX = 2 ** 256 - 1


def _new_id() -> str:
    return uuid.uuid4().hex


def _checksum(address: str) -> str:
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


class IntentAction(str, Enum):
    SINGLE_TRANSFER = "single_transfer"
    RECURRING_TRANSFER = "recurring_transfer"


class IntentStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    EXECUTED = "executed"
    FAILED = "failed"


class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TransferRequest(BaseModel):
    """The struct the user signs and the vault re-hashes"""
    model_config = ConfigDict(frozen=True)

    recipient: str
    amount: int
    nonce: int
    deadline: int

    @field_validator("recipient")
    @classmethod
    def _recipient_is_address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("amount", "nonce", "deadline")
    @classmethod
    def _fits_uint256(cls, value: int) -> int:
        if value < 0 or value > UINT256_MAX:
            raise ValueError("value does not fit in uint256")
        return value

    @field_validator("amount")
    @classmethod
    def _amount_positive(cls, value: int) -> int:
        if value == 0:
            raise ValueError("amount must be greater than zero")
        return value

    def as_contract_tuple(self) -> Tuple[str, int, int, int]:
        """Positional struct value for executeTransfer"""
        return (self.recipient, self.amount, self.nonce, self.deadline)


class SignedAuthorization(BaseModel):
    """A user's signature together with the request it covers"""
    model_config = ConfigDict(frozen=True)

    request: Optional[TransferRequest] = None
    signature: str
    signer_address: str

    @field_validator("signature")
    @classmethod
    def _signature_is_65_bytes(cls, value: str) -> str:
        hex_value = value[2:] if value.startswith("0x") else value
        try:
            raw = bytes.fromhex(hex_value)
        except ValueError:
            raise ValueError("signature must be hex encoded")
        if len(raw) != 65:
            raise ValueError(f"signature must be 65 bytes, got {len(raw)}")
        return "0x" + hex_value.lower()

    @field_validator("signer_address")
    @classmethod
    def _signer_is_address(cls, value: str) -> str:
        return _checksum(value)


class Intent(BaseModel):
    """A user's parsed transfer goal"""
    id: str = Field(default_factory=_new_id)
    user_id: str
    action: IntentAction
    amount: str
    currency: str = "cUSD"
    recipient: str
    frequency: Optional[Frequency] = None
    status: IntentStatus = IntentStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    executed_at: Optional[datetime] = None


class Transfer(BaseModel):
    """Execution record for one submitted transfer, keyed by tx_hash"""
    id: str = Field(default_factory=_new_id)
    intent_id: str
    user_id: str
    agent_id: int
    tx_hash: str
    recipient: str
    amount: int
    status: TransferStatus = TransferStatus.PENDING
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != TransferStatus.PENDING


class Schedule(BaseModel):
    """
    A recurring transfer.

    `signature` is reused for every run. `signed_request` holds the exact
    request that signature covers when the caller provided it; without it
    each run rebuilds the request from the schedule fields.
    """
    id: str = Field(default_factory=_new_id)
    user_id: str
    user_address: str
    intent_id: str
    frequency: Frequency
    amount: int
    recipient: str
    signature: str
    signed_request: Optional[TransferRequest] = None
    next_run: datetime
    last_run: Optional[datetime] = None
    is_active: bool = True
    anchor_day: int = Field(ge=1, le=31)
    failure_count: int = 0
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("user_address", "recipient")
    @classmethod
    def _is_address(cls, value: str) -> str:
        return _checksum(value)

    @field_validator("amount")
    @classmethod
    def _amount_fits_request(cls, value: int) -> int:
        if value <= 0 or value > UINT256_MAX:
            raise ValueError("amount must be greater than zero and fit in uint256")
        return value


class TxReceipt(BaseModel):
    """Transaction receipt from the blockchain"""
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="transactionHash")
    block_number: int = Field(..., alias="blockNumber")
    block_hash: Optional[str] = Field(None, alias="blockHash")
    status: int
    gas_used: int = Field(..., alias="gasUsed")
    from_address: Optional[str] = Field(None, alias="from")
    to_address: Optional[str] = Field(None, alias="to")
    logs: List[Any] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class PendingTransfer(BaseModel):
    """Handle for a broadcast transaction that has not been confirmed yet"""
    tx_hash: str
    submitted_at: datetime = Field(default_factory=utc_now)


class ConfirmationResult(BaseModel):
    """Outcome of waiting for a submitted transfer"""
    tx_hash: str
    status: TransferStatus
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class AgentReputation(BaseModel):
    """(feedbackCount, averageRating) for the platform agent"""
    agent_id: int
    feedback_count: int = 0
    average_rating: int = 0
    source: str = "vault"


class TransferResult(BaseModel):
    """What the executor reports back for one execution"""
    tx_hash: str
    status: TransferStatus
    explorer_url: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    transfer_id: Optional[str] = None
