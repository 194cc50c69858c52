"""
Pytest fixtures for the PulseRemit tests.
"""
from unittest.mock import MagicMock

import pytest
from eth_account import Account

from pulseremit.clock import ManualClock
from pulseremit.executor import TransferExecutor
from pulseremit.gateway._rate_limited_log import reset_rate_limits
from pulseremit.models import Intent, IntentAction, TransferRequest
from pulseremit.scheduler import ScheduleProcessor
from pulseremit.store import InMemoryStore

from tests.test_helpers import (
    FakeChainGateway, ONE_TOKEN, START_TIME, TEST_AGENT_KEY, TEST_RECIPIENT, TEST_USER_ADDRESS, TEST_USER_KEY,
    TEST_VAULT, TEST_IDENTITY_REGISTRY, TEST_REPUTATION_REGISTRY,
    create_test_config, domain_separator_for, sign_transfer,
)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Rate-limited log state is module level; start every test clean."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def clock():
    return ManualClock(START_TIME)


@pytest.fixture
def config():
    return create_test_config()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def chain(config):
    """Simulated vault holding 200 tokens for the test user at nonce 7"""
    fake = FakeChainGateway(config, domain_separator_for())
    fake.fund(TEST_USER_ADDRESS, 200 * ONE_TOKEN, nonce=7)
    return fake


@pytest.fixture
def executor(chain, store, config, clock):
    return TransferExecutor(chain, store, config, clock=clock)


@pytest.fixture
def processor(executor, store, clock):
    return ScheduleProcessor(executor, store, clock=clock, interval=3600)


@pytest.fixture
def user_account():
    return Account.from_key(TEST_USER_KEY)


@pytest.fixture
def make_intent(store):
    """Factory storing a pending intent"""
    def _make(amount="100", action=IntentAction.SINGLE_TRANSFER, **kwargs):
        intent = Intent(
            user_id=kwargs.pop("user_id", "user-1"),
            action=action,
            amount=amount,
            recipient=kwargs.pop("recipient", TEST_RECIPIENT),
            **kwargs
        )
        return store.save_intent(intent)
    return _make


@pytest.fixture
def make_request(clock):
    """Factory for a request one hour out, at the vault's current nonce"""
    def _make(amount=100 * ONE_TOKEN, nonce=7, deadline=None, recipient=TEST_RECIPIENT):
        if deadline is None:
            deadline = int(clock.now().timestamp()) + 3600
        return TransferRequest(recipient=recipient, amount=amount, nonce=nonce, deadline=deadline)
    return _make


@pytest.fixture
def signed(make_request):
    """Factory returning (request, signature) signed by the test user"""
    def _make(private_key=TEST_USER_KEY, **kwargs):
        request = make_request(**kwargs)
        return request, sign_transfer(request, private_key)
    return _make


@pytest.fixture
def mock_w3():
    """
    Create a mock Web3 instance whose contracts are looked up by address.

    The vault, identity registry and reputation registry each get their own
    MagicMock, exposed as mock_w3.contracts[address].
    """
    w3 = MagicMock()
    w3.eth.gas_price = 1000000000  # 1 gwei
    w3.eth.get_transaction_count = MagicMock(return_value=12)
    w3.eth.send_raw_transaction = MagicMock(return_value=bytes.fromhex("ab" * 32))

    contracts = {
        TEST_VAULT: MagicMock(name="vault"),
        TEST_IDENTITY_REGISTRY: MagicMock(name="identity_registry"),
        TEST_REPUTATION_REGISTRY: MagicMock(name="reputation_registry"),
    }

    def contract(address, abi):
        return contracts[address]

    w3.eth.contract = MagicMock(side_effect=contract)
    w3.contracts = contracts
    return w3


@pytest.fixture
def mock_signer():
    """Custom signer that records what it signs"""
    signer = MagicMock()
    signer.address = Account.from_key(TEST_AGENT_KEY).address
    signer.sign_transaction.return_value = MagicMock(raw_transaction=b"\x02signed")
    return signer
