"""
Tests for the TransferExecutor pipeline.
"""
import pytest

from pulseremit.exceptions import (
    AgentNotVerifiedError, DeadlineExpiredError, DuplicateExecutionError,
    InsufficientBalanceError, IntentNotFoundError, SignerMismatchError, StaleNonceError,
    ValidationError,
)
from pulseremit.gateway import ChainReadError, ConfirmationTimeoutError, TransferSubmissionError
from pulseremit.models import IntentStatus, SignedAuthorization, TransferStatus
from tests.test_helpers import (
    ONE_TOKEN, TEST_AGENT_ID, TEST_OTHER_KEY, TEST_RECIPIENT, TEST_USER_ADDRESS, create_test_config, sign_transfer,
)


def _authorize(request, signature, signer=TEST_USER_ADDRESS):
    return SignedAuthorization(request=request, signature=signature, signer_address=signer)


class TestEndToEnd:
    def test_confirmed_transfer_is_recorded_and_intent_executed(self, executor, chain, store, make_intent, signed):
        """Balance 200, amount 100, nonce N, deadline in an hour: confirmed at block B"""
        intent = make_intent(amount="100")
        request, signature = signed()

        result = executor.execute(intent, _authorize(request, signature))

        assert result.status == TransferStatus.CONFIRMED
        assert result.block_number == chain.last_block
        assert result.explorer_url.endswith(f"/tx/{result.tx_hash}")

        transfer = store.get_transfer(result.tx_hash)
        assert transfer.status == TransferStatus.CONFIRMED
        assert transfer.block_number == chain.last_block
        assert transfer.gas_used == 85000
        assert transfer.amount == 100 * ONE_TOKEN
        assert transfer.agent_id == TEST_AGENT_ID
        assert transfer.confirmed_at is not None

        stored_intent = store.get_intent(intent.id)
        assert stored_intent.status == IntentStatus.EXECUTED
        assert stored_intent.executed_at == transfer.confirmed_at

        assert chain.balances[TEST_USER_ADDRESS] == 100 * ONE_TOKEN
        assert chain.nonces[TEST_USER_ADDRESS] == 8

    def test_reverted_transfer_marks_intent_failed(self, executor, chain, store, make_intent, signed):
        intent = make_intent()
        request, signature = signed()
        chain.outcomes.append("failed")

        result = executor.execute(intent, _authorize(request, signature))

        assert result.status == TransferStatus.FAILED
        transfer = store.get_transfer(result.tx_hash)
        assert transfer.status == TransferStatus.FAILED
        assert transfer.error_message == "Transaction reverted on-chain"

        stored_intent = store.get_intent(intent.id)
        assert stored_intent.status == IntentStatus.FAILED
        assert stored_intent.error_message == "Transaction reverted on-chain"
        assert stored_intent.executed_at is None

        # A revert spends nothing and leaves the nonce alone
        assert chain.balances[TEST_USER_ADDRESS] == 200 * ONE_TOKEN
        assert chain.nonces[TEST_USER_ADDRESS] == 7

    def test_signed_request_is_submitted_unchanged(self, executor, chain, make_intent, signed):
        intent = make_intent(amount="55")  # the signed request wins over intent fields
        request, signature = signed(amount=100 * ONE_TOKEN)

        executor.execute(intent, _authorize(request, signature))

        submitted_request, submitted_signature, agent_id = chain.submitted[0]
        assert submitted_request == request
        assert submitted_signature == signature
        assert agent_id == TEST_AGENT_ID

    def test_execute_intent_by_id(self, executor, make_intent, signed):
        intent = make_intent()
        request, signature = signed()

        result = executor.execute_intent(intent.id, _authorize(request, signature))

        assert result.status == TransferStatus.CONFIRMED

    def test_update_intent_false_leaves_intent_alone(self, executor, store, make_intent, signed):
        intent = make_intent(status=IntentStatus.SCHEDULED)
        request, signature = signed()

        executor.execute(intent, _authorize(request, signature), update_intent=False)

        assert store.get_intent(intent.id).status == IntentStatus.SCHEDULED


class TestRejections:
    def test_already_executed_intent_is_rejected(self, executor, chain, make_intent, signed):
        intent = make_intent(status=IntentStatus.EXECUTED)
        request, signature = signed()

        with pytest.raises(DuplicateExecutionError):
            executor.execute(intent, _authorize(request, signature))
        assert chain.submitted == []

    def test_second_execution_of_same_intent_is_rejected(self, executor, store, make_intent, signed):
        intent = make_intent()
        request, signature = signed()
        executor.execute(intent, _authorize(request, signature))

        with pytest.raises(DuplicateExecutionError):
            executor.execute(store.get_intent(intent.id), _authorize(request, signature))

    def test_failed_intent_can_be_retried(self, executor, chain, store, make_intent, signed):
        intent = make_intent()
        request, signature = signed()
        chain.outcomes.append("failed")
        executor.execute(intent, _authorize(request, signature))

        result = executor.execute(store.get_intent(intent.id), _authorize(request, signature))

        assert result.status == TransferStatus.CONFIRMED
        assert store.get_intent(intent.id).status == IntentStatus.EXECUTED

    def test_unknown_intent(self, executor, signed):
        request, signature = signed()
        with pytest.raises(IntentNotFoundError):
            executor.execute_intent("missing", _authorize(request, signature))

    def test_insufficient_balance_is_a_preflight_error(self, executor, chain, store, make_intent, signed):
        intent = make_intent(amount="250")
        request, signature = signed(amount=250 * ONE_TOKEN)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            executor.execute(intent, _authorize(request, signature))

        assert exc_info.value.balance == 200 * ONE_TOKEN
        assert exc_info.value.amount == 250 * ONE_TOKEN
        assert chain.submitted == []
        assert store.get_intent(intent.id).status == IntentStatus.PENDING

    def test_expired_deadline(self, executor, chain, clock, make_intent, signed):
        intent = make_intent()
        request, signature = signed(deadline=int(clock.now().timestamp()) - 1)

        with pytest.raises(DeadlineExpiredError):
            executor.execute(intent, _authorize(request, signature))
        assert chain.submitted == []

    def test_deadline_equal_to_now_is_accepted(self, executor, clock, make_intent, signed):
        intent = make_intent()
        request, signature = signed(deadline=int(clock.now().timestamp()))

        assert executor.execute(intent, _authorize(request, signature)).status == TransferStatus.CONFIRMED

    def test_signer_mismatch(self, executor, chain, make_intent, signed):
        intent = make_intent()
        request, signature = signed(private_key=TEST_OTHER_KEY)

        with pytest.raises(SignerMismatchError) as exc_info:
            executor.execute(intent, _authorize(request, signature))

        assert exc_info.value.expected == TEST_USER_ADDRESS
        assert exc_info.value.recovered != TEST_USER_ADDRESS
        assert chain.submitted == []

    def test_stale_nonce(self, executor, chain, make_intent, signed):
        intent = make_intent()
        request, signature = signed(nonce=6)

        with pytest.raises(StaleNonceError) as exc_info:
            executor.execute(intent, _authorize(request, signature))

        assert exc_info.value.signed_nonce == 6
        assert exc_info.value.current_nonce == 7
        assert chain.submitted == []

    def test_agent_verification_when_required(self, chain, store, clock, make_intent, signed):
        from pulseremit.executor import TransferExecutor

        executor = TransferExecutor(chain, store, create_test_config(require_agent_verification=True), clock=clock)
        chain.owns_identity = False
        intent = make_intent()
        request, signature = signed()

        with pytest.raises(AgentNotVerifiedError):
            executor.execute(intent, _authorize(request, signature))

    def test_read_failure_propagates(self, executor, chain, make_intent, signed):
        chain.fail_reads_for.add(TEST_USER_ADDRESS)
        intent = make_intent()
        request, signature = signed()

        with pytest.raises(ChainReadError):
            executor.execute(intent, _authorize(request, signature))

    def test_submission_failure_marks_intent_failed(self, executor, chain, store, make_intent, signed, monkeypatch):
        def _reject(*args, **kwargs):
            raise TransferSubmissionError("Vault would revert executeTransfer: execution reverted")
        monkeypatch.setattr(chain, "submit_transfer", _reject)
        intent = make_intent()
        request, signature = signed()

        with pytest.raises(TransferSubmissionError):
            executor.execute(intent, _authorize(request, signature))

        stored = store.get_intent(intent.id)
        assert stored.status == IntentStatus.FAILED
        assert "would revert" in stored.error_message

    def test_confirmation_timeout_leaves_transfer_pending(self, executor, chain, store, make_intent, signed):
        intent = make_intent()
        request, signature = signed()
        chain.outcomes.append("timeout")

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            executor.execute(intent, _authorize(request, signature))

        transfer = store.get_transfer(exc_info.value.tx_hash)
        assert transfer.status == TransferStatus.PENDING
        assert store.get_intent(intent.id).status == IntentStatus.PENDING


class TestRequestResolution:
    def test_request_rebuilt_from_intent_when_missing(self, executor, chain, clock, make_intent):
        intent = make_intent(amount="12.5")

        request = executor.resolve_request(
            intent, SignedAuthorization(signature="0x" + "11" * 65, signer_address=TEST_USER_ADDRESS)
        )

        assert request.recipient == TEST_RECIPIENT
        assert request.amount == 125 * 10 ** 17
        assert request.nonce == 7
        assert request.deadline == int(clock.now().timestamp()) + 3600

    def test_rebuilt_request_executes_when_user_signed_those_values(self, executor, clock, make_intent, make_request):
        intent = make_intent(amount="100")
        request = make_request(amount=100 * ONE_TOKEN, nonce=7, deadline=int(clock.now().timestamp()) + 3600)
        authorization = SignedAuthorization(signature=sign_transfer(request), signer_address=TEST_USER_ADDRESS)

        result = executor.execute(intent, authorization)

        assert result.status == TransferStatus.CONFIRMED

    def test_invalid_intent_amount(self, executor, make_intent):
        intent = make_intent(amount="ten dollars")

        with pytest.raises(ValidationError):
            executor.resolve_request(
                intent, SignedAuthorization(signature="0x" + "11" * 65, signer_address=TEST_USER_ADDRESS)
            )


class TestIdempotency:
    def test_same_tx_hash_is_recorded_once(self, store):
        from pulseremit.models import Transfer

        first = Transfer(intent_id="i1", user_id="u1", agent_id=1, tx_hash="0xabc", recipient=TEST_RECIPIENT, amount=1)
        second = Transfer(intent_id="i2", user_id="u2", agent_id=1, tx_hash="0xabc", recipient=TEST_RECIPIENT, amount=2)

        store.record_transfer(first)
        stored = store.record_transfer(second)

        assert stored.id == first.id
        assert stored.intent_id == "i1"
        assert len(store.list_transfers()) == 1


def test_signature_is_redacted_in_logs(executor, signed):
    request, signature = signed()

    sanitized = executor._sanitize_authorization(_authorize(request, signature))

    assert signature not in str(sanitized)
    assert sanitized["signature"] == f"[REDACTED - {len(signature)} chars]"
