"""
Shared constants and helpers for the PulseRemit tests.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data

from pulseremit.config import VaultConfig
from pulseremit.models import TransferRequest

from .fake_chain import FakeChainGateway

# Test constants used throughout tests
TEST_RPC_URL = "https://rpc.example.com"
TEST_VAULT = "0x1234567890123456789012345678901234567890"
TEST_IDENTITY_REGISTRY = "0x2345678901234567890123456789012345678901"
TEST_REPUTATION_REGISTRY = "0x3456789012345678901234567890123456789012"
TEST_CHAIN_ID = 11142220
TEST_AGENT_ID = 42
TEST_AGENT_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_USER_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_OTHER_KEY = "0x8da4ef21b864d2cc526dbdb2a120bd2874c36c9d0a1fb7f8c63d7f7a8b41de8f"
TEST_RECIPIENT = "0x9876543210987654321098765432109876543210"
ONE_TOKEN = 10 ** 18
START_TIME = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

TEST_DOMAIN = {
    "name": "PulseVault",
    "version": "1",
    "chainId": TEST_CHAIN_ID,
    "verifyingContract": TEST_VAULT,
}

TRANSFER_REQUEST_TYPES = {
    "TransferRequest": [
        {"name": "recipient", "type": "address"},
        {"name": "amount", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ]
}

TEST_USER_ADDRESS = Account.from_key(TEST_USER_KEY).address
TEST_AGENT_ADDRESS = Account.from_key(TEST_AGENT_KEY).address


def typed_data_for(request: TransferRequest, domain: Optional[Dict[str, Any]] = None):
    """eth-account's EIP-712 encoding of a transfer request (header = domain separator, body = struct hash)"""
    return encode_typed_data(
        domain or TEST_DOMAIN,
        TRANSFER_REQUEST_TYPES,
        {
            "recipient": request.recipient,
            "amount": request.amount,
            "nonce": request.nonce,
            "deadline": request.deadline,
        },
    )


def domain_separator_for(domain: Optional[Dict[str, Any]] = None) -> bytes:
    """Domain separator computed independently by eth-account"""
    placeholder = TransferRequest(recipient=TEST_RECIPIENT, amount=1, nonce=0, deadline=0)
    return bytes(typed_data_for(placeholder, domain).header)


def sign_transfer(request: TransferRequest, private_key: str = TEST_USER_KEY,
                  domain: Optional[Dict[str, Any]] = None) -> str:
    """Sign a transfer request the way a user's wallet does (eth_signTypedData_v4)"""
    signed = Account.sign_message(typed_data_for(request, domain), private_key)
    return "0x" + bytes(signed.signature).hex()


def create_test_config(**overrides) -> VaultConfig:
    """
    Create a VaultConfig for testing with consistent defaults.

    Args:
        **overrides: Fields to replace

    Returns:
        Configured VaultConfig instance
    """
    values = dict(
        rpc_url=TEST_RPC_URL,
        vault_address=TEST_VAULT,
        agent_id=TEST_AGENT_ID,
        agent_private_key=TEST_AGENT_KEY,
        chain_id=TEST_CHAIN_ID,
        identity_registry_address=TEST_IDENTITY_REGISTRY,
        reputation_registry_address=TEST_REPUTATION_REGISTRY,
        receipt_timeout=5.0,
        poll_interval=0.01,
    )
    values.update(overrides)
    return VaultConfig(**values)


__all__ = [
    "FakeChainGateway", "TEST_RPC_URL", "TEST_VAULT", "TEST_IDENTITY_REGISTRY",
    "TEST_REPUTATION_REGISTRY", "TEST_CHAIN_ID", "TEST_AGENT_ID", "TEST_AGENT_KEY",
    "TEST_USER_KEY", "TEST_OTHER_KEY", "TEST_RECIPIENT", "ONE_TOKEN", "START_TIME", "TEST_DOMAIN",
    "TRANSFER_REQUEST_TYPES", "TEST_USER_ADDRESS", "TEST_AGENT_ADDRESS",
    "typed_data_for", "domain_separator_for", "sign_transfer", "create_test_config",
]
