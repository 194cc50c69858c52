"""
ChainGateway - the single point of contact with the vault contract.
"""
import logging
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.types import TxReceipt as Web3TxReceipt

from ..config import VaultConfig
from ..digest import recover_address
from ..models import (
    AgentReputation, ConfirmationResult, PendingTransfer, TransferRequest,
    TransferStatus, TxReceipt,
)
from ..utils import short_hex, to_bytes32, to_hex, tx_url
from ._rate_limited_log import rate_limited_log
from .exceptions import (
    ChainErrorCode, ChainReadError, ConfirmationTimeoutError, SignatureError,
    TransferSubmissionError,
)

T = TypeVar('T')

DEFAULT_GAS_LIMIT = 300000

EMPTY_BYTES32 = b"\x00" * 32


class Signer(Protocol):
    """Protocol for custom signers (KMS, hardware wallets)"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """Sign transaction and return signed tx object"""
        ...


_TRANSFER_REQUEST_COMPONENTS = [
    {"internalType": "address", "name": "recipient", "type": "address"},
    {"internalType": "uint256", "name": "amount", "type": "uint256"},
    {"internalType": "uint256", "name": "nonce", "type": "uint256"},
    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
]

VAULT_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "getNonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "address", "name": "user", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getDomainSeparator",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "uint256", "name": "agentId", "type": "uint256"}],
        "name": "getAgentReputation",
        "outputs": [
            {"internalType": "uint256", "name": "feedbackCount", "type": "uint256"},
            {"internalType": "uint256", "name": "averageRating", "type": "uint256"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {
                "components": _TRANSFER_REQUEST_COMPONENTS,
                "internalType": "struct PulseVault.TransferRequest",
                "name": "request",
                "type": "tuple"
            },
            {"internalType": "bytes", "name": "signature", "type": "bytes"},
            {"internalType": "uint256", "name": "agentId", "type": "uint256"}
        ],
        "name": "executeTransfer",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

IDENTITY_REGISTRY_ABI = [
    {
        "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    }
]

REPUTATION_REGISTRY_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "agentId", "type": "uint256"},
            {"internalType": "address[]", "name": "clients", "type": "address[]"},
            {"internalType": "bytes32", "name": "domain", "type": "bytes32"},
            {"internalType": "bytes32", "name": "tag", "type": "bytes32"}
        ],
        "name": "getSummary",
        "outputs": [
            {"internalType": "uint64", "name": "feedbackCount", "type": "uint64"},
            {"internalType": "uint8", "name": "averageRating", "type": "uint8"}
        ],
        "stateMutability": "view",
        "type": "function"
    }
]


class ChainGateway:
    """
    Reads vault state and submits authorized transfers.

    This gateway handles:
    1. Contract reads (nonce, vault balance, domain separator, reputation)
    2. Signature recovery for pre-flight checks
    3. Building, signing and broadcasting executeTransfer
    4. Waiting for and interpreting receipts

    It never retries a submission; retry policy belongs to the caller.
    """

    def __init__(
        self,
        config: VaultConfig,
        signer: Optional[Signer] = None,
        w3: Optional[Web3] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the gateway

        Args:
            config: Immutable connection and account settings
            signer: Custom signer for the agent account (optional if the
                config carries agent_private_key)
            w3: Pre-built Web3 instance (a new HTTP connection is made if omitted)
            logger: Optional logger instance to use for debug/info logging

        Raises:
            ValueError: If neither a signer nor agent_private_key is available
        """
        if signer is None and not config.agent_private_key:
            raise ValueError("Either agent_private_key or signer must be provided")

        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.signer = signer or Account.from_key(config.agent_private_key)
        self.w3 = w3 or Web3(self._create_provider(config))

        self.vault = self.w3.eth.contract(
            address=Web3.to_checksum_address(config.vault_address),
            abi=VAULT_ABI
        )
        # ownerOf lives on the identity registry when one is configured
        identity_address = config.identity_registry_address or config.vault_address
        self.identity_registry = self.w3.eth.contract(
            address=Web3.to_checksum_address(identity_address),
            abi=IDENTITY_REGISTRY_ABI
        )
        self.reputation_registry = None
        if config.reputation_registry_address:
            self.reputation_registry = self.w3.eth.contract(
                address=Web3.to_checksum_address(config.reputation_registry_address),
                abi=REPUTATION_REGISTRY_ABI
            )
        self._domain_separator: Optional[bytes] = None

    @staticmethod
    def _create_provider(config: VaultConfig) -> Web3.HTTPProvider:
        """HTTP provider backed by a session that retries transient HTTP failures"""
        session = requests.Session()
        retries = Retry(
            total=config.retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=config.retry_count,
            read=config.retry_count,
        )
        session.mount("http://", HTTPAdapter(max_retries=retries))
        session.mount("https://", HTTPAdapter(max_retries=retries))
        return Web3.HTTPProvider(
            config.rpc_url,
            request_kwargs={"timeout": config.http_timeout},
            session=session
        )

    @property
    def agent_address(self) -> str:
        """Address of the account that submits transfers"""
        return self.signer.address

    def explorer_url(self, tx_hash: str) -> str:
        return tx_url(self.config.explorer_url, tx_hash)

    def _read(self, description: str, call: Callable[[], T]) -> T:
        try:
            return call()
        except Exception as e:
            self.logger.error(f"Failed to read {description}: {e}")
            raise ChainReadError(f"Failed to read {description}: {str(e)}") from e

    def read_nonce(self, user: str) -> int:
        """
        Current replay-protection counter for `user`.

        Raises:
            ChainReadError: If the read fails
        """
        address = Web3.to_checksum_address(user)
        return int(self._read(
            f"nonce for {short_hex(address)}",
            lambda: self.vault.functions.getNonce(address).call()
        ))

    def read_vault_balance(self, user: str) -> int:
        """
        Funds `user` holds in the vault, in base units.

        Raises:
            ChainReadError: If the read fails
        """
        address = Web3.to_checksum_address(user)
        return int(self._read(
            f"vault balance for {short_hex(address)}",
            lambda: self.vault.functions.balanceOf(address).call()
        ))

    def read_domain_separator(self) -> bytes:
        """
        The vault's EIP-712 domain separator.

        The value only depends on the contract address and chain, so it is
        read once per gateway.

        Raises:
            ChainReadError: If the read fails or the value is not 32 bytes
        """
        if self._domain_separator is None:
            value = self._read(
                "domain separator",
                lambda: self.vault.functions.getDomainSeparator().call()
            )
            try:
                self._domain_separator = to_bytes32(value)
            except ValueError as e:
                raise ChainReadError(
                    f"Vault returned an invalid domain separator: {e}",
                    ChainErrorCode.INVALID_RESPONSE
                )
        return self._domain_separator

    def recover_signer(self, digest: bytes, signature: Union[str, bytes]) -> str:
        """
        Recover the address that produced `signature` over `digest`.

        Raises:
            SignatureError: If the signature is malformed or unrecoverable
        """
        try:
            return recover_address(digest, signature)
        except Exception as e:
            raise SignatureError(f"Could not recover signer: {str(e)}") from e

    def submit_transfer(
        self,
        request: TransferRequest,
        signature: str,
        agent_id: Optional[int] = None,
        gas: Optional[int] = None
    ) -> PendingTransfer:
        """
        Send executeTransfer to the vault without waiting for inclusion.

        Args:
            request: The exact request the user signed
            signature: The user's signature over the request digest
            agent_id: Agent identity token id (defaults to config.agent_id)
            gas: Gas limit to use (estimated with a 10% buffer if None)

        Returns:
            Handle carrying the transaction hash

        Raises:
            TransferSubmissionError: If the call would revert or cannot be
                signed or broadcast
            ChainReadError: If a read needed to build the transaction fails
        """
        agent_id = self.config.agent_id if agent_id is None else agent_id
        try:
            signature_bytes = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        except ValueError as e:
            raise TransferSubmissionError(f"Invalid signature encoding: {str(e)}", ChainErrorCode.BAD_SIGNATURE)

        self.logger.info(
            f"Executing transfer to {short_hex(request.recipient)} "
            f"amount={request.amount} nonce={request.nonce} agent={agent_id}"
        )

        function = self.vault.functions.executeTransfer(
            request.as_contract_tuple(),
            signature_bytes,
            agent_id
        )
        from_address = self.agent_address

        # 1. Gas estimation doubles as a dry run of the contract checks
        if gas is None:
            try:
                gas = int(function.estimate_gas({'from': from_address}) * 1.1)
                self.logger.debug(f"Estimated gas: {gas}")
            except ContractLogicError as e:
                self.logger.error(f"Vault rejected executeTransfer during estimation: {e}")
                raise TransferSubmissionError(
                    f"Vault would revert executeTransfer: {str(e)}",
                    ChainErrorCode.WOULD_REVERT
                ) from e
            except Exception as e:
                gas = DEFAULT_GAS_LIMIT
                self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

        # 2. Build transaction
        tx_params = {
            'from': from_address,
            'nonce': self._read(
                "agent transaction count",
                lambda: self.w3.eth.get_transaction_count(from_address, "pending")
            ),
            'gas': gas,
            'gasPrice': self._read("gas price", lambda: self.w3.eth.gas_price),
        }
        if self.config.chain_id is not None:
            tx_params['chainId'] = self.config.chain_id

        try:
            tx = function.build_transaction(tx_params)
        except Exception as e:
            raise TransferSubmissionError(f"Failed to build transaction: {str(e)}") from e

        # 3. Sign transaction
        try:
            signed_tx = self.signer.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise TransferSubmissionError(
                f"Failed to sign transaction: {str(e)}",
                ChainErrorCode.SIGNING_FAILED
            ) from e

        # 4. Send transaction
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except Exception as e:
            self.logger.error(f"Failed to send transaction: {e}")
            raise TransferSubmissionError(
                f"Failed to send transaction: {str(e)}",
                ChainErrorCode.BROADCAST_FAILED
            ) from e

        pending = PendingTransfer(tx_hash=to_hex(tx_hash))
        self.logger.info(f"Transfer transaction sent: {pending.tx_hash}")
        return pending

    def await_confirmation(self, pending: PendingTransfer) -> ConfirmationResult:
        """
        Wait until the network reports inclusion of a submitted transfer.

        Returns:
            `confirmed` for a successful state change, `failed` for a revert

        Raises:
            ConfirmationTimeoutError: If no receipt arrives within config.receipt_timeout
            ChainReadError: If the receipt cannot be fetched
        """
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                pending.tx_hash,
                timeout=self.config.receipt_timeout,
                poll_latency=self.config.poll_interval
            )
        except TimeExhausted as e:
            self.logger.warning(f"No receipt for {pending.tx_hash} after {self.config.receipt_timeout}s")
            raise ConfirmationTimeoutError(
                f"Transaction {pending.tx_hash} not confirmed after {self.config.receipt_timeout}s",
                pending.tx_hash
            ) from e
        except Exception as e:
            self.logger.error(f"Failed to fetch receipt for {pending.tx_hash}: {e}")
            raise ChainReadError(f"Failed to fetch receipt: {str(e)}") from e

        tx_receipt = self._convert_receipt(receipt)
        status = TransferStatus.CONFIRMED if tx_receipt.succeeded else TransferStatus.FAILED
        log = self.logger.info if tx_receipt.succeeded else self.logger.warning
        log(
            f"Transfer {status.value}: {pending.tx_hash} "
            f"block={tx_receipt.block_number} gasUsed={tx_receipt.gas_used}"
        )
        return ConfirmationResult(
            tx_hash=pending.tx_hash,
            status=status,
            block_number=tx_receipt.block_number,
            gas_used=tx_receipt.gas_used
        )

    def _convert_receipt(self, web3_receipt: Web3TxReceipt) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model

        Args:
            web3_receipt: The Web3 transaction receipt

        Returns:
            Our TxReceipt model
        """
        receipt_dict = dict(web3_receipt)

        # Convert bytes to hex strings
        for key, value in list(receipt_dict.items()):
            if isinstance(value, bytes):
                receipt_dict[key] = '0x' + value.hex()

        return TxReceipt.model_validate(receipt_dict)

    def verify_agent_ownership(self, agent_id: Optional[int] = None) -> bool:
        """
        Check that the agent account owns its identity token.

        Raises:
            ChainReadError: If ownerOf cannot be read
        """
        agent_id = self.config.agent_id if agent_id is None else agent_id
        owner = self._read(
            f"owner of agent {agent_id}",
            lambda: self.identity_registry.functions.ownerOf(agent_id).call()
        )
        return str(owner).lower() == self.agent_address.lower()

    def get_agent_reputation(self, agent_id: Optional[int] = None) -> AgentReputation:
        """
        Reputation summary for the agent.

        Reads the vault helper first, then the reputation registry. The value
        is informational, so when both are unavailable a zero-value result is
        returned instead of raising.
        """
        agent_id = self.config.agent_id if agent_id is None else agent_id

        try:
            feedback_count, average_rating = self.vault.functions.getAgentReputation(agent_id).call()
            self.logger.debug(f"Agent reputation fetched: count={feedback_count} rating={average_rating}")
            return AgentReputation(
                agent_id=agent_id,
                feedback_count=int(feedback_count),
                average_rating=int(average_rating),
                source="vault"
            )
        except Exception as e:
            rate_limited_log(
                f"Vault reputation lookup failed for agent {agent_id}: {e}",
                level="warning",
                logger_instance=self.logger,
                key=f"reputation:vault:{agent_id}"
            )

        if self.reputation_registry is not None:
            try:
                feedback_count, average_rating = self.reputation_registry.functions.getSummary(
                    agent_id, [], EMPTY_BYTES32, EMPTY_BYTES32
                ).call()
                return AgentReputation(
                    agent_id=agent_id,
                    feedback_count=int(feedback_count),
                    average_rating=int(average_rating),
                    source="registry"
                )
            except Exception as e:
                rate_limited_log(
                    f"Reputation registry lookup failed for agent {agent_id}: {e}",
                    level="warning",
                    logger_instance=self.logger,
                    key=f"reputation:registry:{agent_id}"
                )

        return AgentReputation(agent_id=agent_id, source="unavailable")
