"""
Gateway module for PulseRemit.

This module provides the only integration point with the PulseVault
contract: reads, signature recovery, transfer submission and receipts.
"""
from .client import ChainGateway, Signer, VAULT_ABI, IDENTITY_REGISTRY_ABI, REPUTATION_REGISTRY_ABI
from .exceptions import (
    ChainErrorCode, ChainGatewayError, ChainReadError, ConfirmationTimeoutError,
    SignatureError, TransferSubmissionError,
)

__all__ = [
    'ChainGateway', 'Signer', 'VAULT_ABI', 'IDENTITY_REGISTRY_ABI', 'REPUTATION_REGISTRY_ABI',
    'ChainErrorCode', 'ChainGatewayError', 'ChainReadError', 'ConfirmationTimeoutError',
    'SignatureError', 'TransferSubmissionError',
]
