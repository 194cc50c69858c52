"""
Utility helpers for amounts, deadlines, addresses and hex values.
"""
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Optional, Union

from web3 import Web3

# Wide enough for any uint256 in either direction
_DECIMAL_PRECISION = 100

TOKEN_DECIMALS = 18


def usd_to_wei(amount: Union[str, int, Decimal], decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert a decimal token amount (e.g. "12.5") to its integer base units.

    Args:
        amount: Decimal amount as string, int or Decimal
        decimals: Token decimals (cUSD uses 18)

    Returns:
        Amount in base units

    Raises:
        ValueError: If the amount is not a finite, non-negative number or
            carries more fractional digits than the token supports
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid token amount: {amount!r}")

    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid token amount: {amount!r}")

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Amount {amount!r} has more than {decimals} decimal places")
        return int(scaled)


def wei_to_usd(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """
    Convert integer base units to a plain decimal string ("100", "0.25").
    """
    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        value = Decimal(int(amount)).scaleb(-decimals).normalize()
        return format(value, "f")


def calculate_deadline(hours_from_now: float = 1, now: Optional[datetime] = None) -> int:
    """
    Unix timestamp `hours_from_now` hours after `now` (defaults to the current time).
    """
    base = now.timestamp() if now is not None else time.time()
    return int(base + hours_from_now * 3600)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed 20-byte hex address (any casing)."""
    return isinstance(address, str) and address.startswith("0x") and Web3.is_address(address)


def to_bytes32(value: Union[str, bytes]) -> bytes:
    """
    Normalise a 32-byte value given as raw bytes or hex string.

    Raises:
        ValueError: If the value is not exactly 32 bytes
    """
    if isinstance(value, str):
        hex_value = value[2:] if value.startswith("0x") else value
        try:
            value = bytes.fromhex(hex_value)
        except ValueError as e:
            raise ValueError(f"Invalid bytes32 hex string: {str(e)}")
    value = bytes(value)
    if len(value) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(value)}")
    return value


def to_hex(value: Union[str, bytes]) -> str:
    """Render bytes (or an existing hex string) as a lowercase 0x hex string."""
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return "0x" + bytes(value).hex()


def short_hex(value: Optional[str], keep: int = 10) -> str:
    """Truncate an address or hash for log lines."""
    if not value:
        return "<none>"
    return f"{value[:keep]}..." if len(value) > keep else value


def tx_url(explorer_base: str, tx_hash: str) -> str:
    """Block explorer link for a transaction hash."""
    return f"{explorer_base.rstrip('/')}/tx/{tx_hash}"
