"""
Typed-data digest for vault transfer requests.

The vault contract rebuilds this digest on-chain and checks the user's
signature against it, so every byte here has to match the contract:

    typeHash   = keccak256("TransferRequest(address recipient,uint256 amount,uint256 nonce,uint256 deadline)")
    structHash = keccak256(abi.encode(typeHash, recipient, amount, nonce, deadline))
    digest     = keccak256(0x19 || 0x01 || domainSeparator || structHash)

The struct is ABI encoded (each field padded to 32 bytes); the final
digest uses tight packing.
"""
from typing import Union

from eth_abi import encode
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from web3 import Web3

from .models import TransferRequest
from .utils import to_bytes32

TRANSFER_REQUEST_TYPE = (
    "TransferRequest(address recipient,uint256 amount,uint256 nonce,uint256 deadline)"
)

TRANSFER_REQUEST_TYPEHASH = bytes(Web3.keccak(text=TRANSFER_REQUEST_TYPE))

_STRUCT_ABI_TYPES = ["bytes32", "address", "uint256", "uint256", "uint256"]

EIP712_PREFIX = b"\x19\x01"


def hash_struct(request: TransferRequest) -> bytes:
    """keccak256 of the ABI-encoded TransferRequest struct"""
    encoded = encode(
        _STRUCT_ABI_TYPES,
        [
            TRANSFER_REQUEST_TYPEHASH,
            request.recipient,
            request.amount,
            request.nonce,
            request.deadline,
        ],
    )
    return bytes(Web3.keccak(encoded))


def build_digest(request: TransferRequest, domain_separator: Union[bytes, str]) -> bytes:
    """
    Build the 32-byte digest a user signs for `request`.

    Args:
        request: The transfer request
        domain_separator: The vault's domain separator (32 bytes or hex)

    Returns:
        32-byte digest

    Raises:
        ValueError: If the domain separator is not 32 bytes
    """
    separator = to_bytes32(domain_separator)
    return bytes(Web3.keccak(EIP712_PREFIX + separator + hash_struct(request)))


def recover_address(digest: Union[bytes, str], signature: Union[bytes, str]) -> str:
    """
    Checksummed address that produced a 65-byte (r, s, v) signature over `digest`.

    Accepts v as 0/1 or 27/28.

    Raises:
        ValueError: If the digest or signature is malformed, or no key recovers
    """
    if isinstance(signature, str):
        signature = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(signature) != 65:
        raise ValueError(f"Signature must be 65 bytes, got {len(signature)}")

    v = signature[64]
    if v >= 27:
        v -= 27
    if v not in (0, 1):
        raise ValueError(f"Invalid signature recovery id {signature[64]}")

    try:
        key = keys.Signature(signature_bytes=signature[:64] + bytes([v])).recover_public_key_from_msg_hash(
            to_bytes32(digest)
        )
    except (BadSignature, ValidationError) as e:
        raise ValueError(f"Signature does not recover: {e}") from e
    return key.to_checksum_address()
