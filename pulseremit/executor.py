"""
TransferExecutor - turns a signed authorization into a recorded vault transfer.
"""
import logging
from typing import Any, Dict, Optional

from .clock import Clock, SystemClock
from .config import VaultConfig
from .digest import build_digest
from .exceptions import (
    AgentNotVerifiedError, DeadlineExpiredError, DuplicateExecutionError,
    InsufficientBalanceError, IntentNotFoundError, SignerMismatchError,
    StaleNonceError, ValidationError,
)
from .gateway import ChainGateway, ConfirmationTimeoutError, TransferSubmissionError
from .models import (
    Intent, IntentStatus, SignedAuthorization, Transfer, TransferRequest,
    TransferResult, TransferStatus,
)
from .store import Store
from .utils import short_hex, usd_to_wei

REVERTED_MESSAGE = "Transaction reverted on-chain"


class TransferExecutor:
    """
    Executes one authorized transfer end to end.

    The pipeline is: resolve request, pre-flight checks, submit, record a
    pending transfer, await confirmation, write back the outcome, and only
    then advance the intent.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        store: Store,
        config: Optional[VaultConfig] = None,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            gateway: Chain gateway used for reads and submission
            store: Persistence for intents and transfers
            config: Settings (defaults to the gateway's config)
            clock: Time source for deadlines (defaults to system time)
            logger: Optional logger instance
        """
        self.gateway = gateway
        self.store = store
        self.config = config or gateway.config
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)

    def execute_intent(self, intent_id: str, authorization: SignedAuthorization) -> TransferResult:
        """
        Look up an intent and execute it.

        Raises:
            IntentNotFoundError: If the intent does not exist
        """
        intent = self.store.get_intent(intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent {intent_id} not found")
        return self.execute(intent, authorization)

    def execute(
        self,
        intent: Intent,
        authorization: SignedAuthorization,
        *,
        update_intent: bool = True
    ) -> TransferResult:
        """
        Execute a transfer for `intent` using the user's signed authorization.

        Args:
            intent: The intent being fulfilled
            authorization: Signature, signer address and (ideally) the exact
                request that was signed
            update_intent: Advance the intent's status after confirmation;
                recurring runs pass False so their intent stays scheduled

        Returns:
            TransferResult with status `confirmed` or `failed`

        Raises:
            DuplicateExecutionError: If the intent was already executed
            PreflightError: If a pre-flight check fails (nothing is submitted)
            TransferSubmissionError: If the vault would revert or the
                transaction cannot be broadcast
            ConfirmationTimeoutError: If no receipt arrives in time; the
                transfer stays pending
            ChainReadError: If a chain read fails
        """
        if intent.status == IntentStatus.EXECUTED:
            raise DuplicateExecutionError(f"Intent {intent.id} has already been executed")

        self.logger.debug(f"Executing intent {intent.id}: {self._sanitize_authorization(authorization)}")

        request = self.resolve_request(intent, authorization)
        self.preflight(request, authorization)

        try:
            pending = self.gateway.submit_transfer(request, authorization.signature, self.config.agent_id)
        except TransferSubmissionError as e:
            self.logger.error(f"Submission failed for intent {intent.id}: {e}")
            if update_intent:
                self.store.update_intent_status(intent.id, IntentStatus.FAILED, error_message=str(e))
            raise

        transfer = self.store.record_transfer(Transfer(
            intent_id=intent.id,
            user_id=intent.user_id,
            agent_id=self.config.agent_id,
            tx_hash=pending.tx_hash,
            recipient=request.recipient,
            amount=request.amount,
        ))

        try:
            confirmation = self.gateway.await_confirmation(pending)
        except ConfirmationTimeoutError:
            self.logger.warning(
                f"Transfer {short_hex(pending.tx_hash)} for intent {intent.id} still pending"
            )
            raise

        error_message = None if confirmation.status == TransferStatus.CONFIRMED else REVERTED_MESSAGE
        transfer = self.store.update_transfer(
            pending.tx_hash,
            confirmation.status,
            block_number=confirmation.block_number,
            gas_used=confirmation.gas_used,
            error_message=error_message,
            confirmed_at=self.clock.now(),
        )

        if update_intent:
            if transfer.status == TransferStatus.CONFIRMED:
                self.store.update_intent_status(
                    intent.id, IntentStatus.EXECUTED, executed_at=transfer.confirmed_at
                )
            else:
                self.store.update_intent_status(
                    intent.id, IntentStatus.FAILED, error_message=error_message
                )

        self.logger.info(
            f"Intent {intent.id} transfer {transfer.status.value}: {short_hex(transfer.tx_hash)}"
        )
        return TransferResult(
            tx_hash=transfer.tx_hash,
            status=transfer.status,
            explorer_url=self.gateway.explorer_url(transfer.tx_hash),
            block_number=transfer.block_number,
            gas_used=transfer.gas_used,
            transfer_id=transfer.id,
        )

    def resolve_request(self, intent: Intent, authorization: SignedAuthorization) -> TransferRequest:
        """
        The request to submit.

        The request carried with the signature is used as is. Rebuilding one
        reads a fresh nonce and computes a new deadline, which only matches
        the signature if the user signed exactly those values.
        """
        if authorization.request is not None:
            return authorization.request

        self.logger.warning(
            f"No signed request supplied for intent {intent.id}; rebuilding from intent fields"
        )
        try:
            amount = usd_to_wei(intent.amount)
        except ValueError as e:
            raise ValidationError(f"Intent {intent.id} has an invalid amount: {e}") from e

        deadline = int(self.clock.now().timestamp()) + self.config.deadline_window
        try:
            return TransferRequest(
                recipient=intent.recipient,
                amount=amount,
                nonce=self.gateway.read_nonce(authorization.signer_address),
                deadline=deadline,
            )
        except ValueError as e:
            raise ValidationError(f"Intent {intent.id} cannot form a transfer request: {e}") from e

    def preflight(self, request: TransferRequest, authorization: SignedAuthorization):
        """
        Checks the vault would otherwise fail on-chain, run before spending gas.

        Raises:
            DeadlineExpiredError, InsufficientBalanceError, StaleNonceError,
            SignerMismatchError, AgentNotVerifiedError
        """
        user = authorization.signer_address

        now = int(self.clock.now().timestamp())
        if request.deadline < now:
            raise DeadlineExpiredError(f"Request deadline {request.deadline} has passed (now {now})")

        balance = self.gateway.read_vault_balance(user)
        if balance < request.amount:
            raise InsufficientBalanceError(
                f"Insufficient vault balance: have {balance}, need {request.amount}",
                balance=balance,
                amount=request.amount,
            )

        current_nonce = self.gateway.read_nonce(user)
        if request.nonce != current_nonce:
            raise StaleNonceError(
                f"Signed nonce {request.nonce} does not match vault nonce {current_nonce}",
                signed_nonce=request.nonce,
                current_nonce=current_nonce,
            )

        digest = build_digest(request, self.gateway.read_domain_separator())
        recovered = self.gateway.recover_signer(digest, authorization.signature)
        if recovered.lower() != user.lower():
            raise SignerMismatchError(
                f"Signature recovers to {short_hex(recovered)}, expected {short_hex(user)}",
                expected=user,
                recovered=recovered,
            )

        if self.config.require_agent_verification and not self.gateway.verify_agent_ownership(self.config.agent_id):
            raise AgentNotVerifiedError(
                f"Agent {self.config.agent_id} is not owned by {short_hex(self.gateway.agent_address)}"
            )

    def _sanitize_authorization(self, authorization: SignedAuthorization) -> Dict[str, Any]:
        """
        Remove sensitive data from an authorization for logging
        """
        result = authorization.model_dump()
        result["signature"] = f"[REDACTED - {len(authorization.signature)} chars]"
        return result
