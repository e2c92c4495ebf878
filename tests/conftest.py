import pytest

from marketplace_chain.config import DEFAULT_ABI_PATH, Settings
from marketplace_chain.core.connection.manager import Connection
from marketplace_chain.core.contract.abi import ContractInterface, load_contract_interface
from marketplace_chain.core.contract.binding import bind

from tests.fakes import CONTRACT, FakeChainProvider


@pytest.fixture(autouse=True)
def _isolate_chain_env(monkeypatch):
    """Keep a developer's real endpoint settings out of the tests."""
    for name in ("SEPOLIA_RPC_URL", "RPC_URL", "CONTRACT_ADDRESS", "NETWORK", "LOG_CHAIN_EVENTS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def interface() -> ContractInterface:
    return load_contract_interface(DEFAULT_ABI_PATH)


@pytest.fixture
def provider() -> FakeChainProvider:
    return FakeChainProvider()


@pytest.fixture
def connection(provider) -> Connection:
    return Connection(endpoint_url=provider.endpoint_url, provider=provider, ready=True)


@pytest.fixture
def binding(connection, interface):
    return bind(connection, CONTRACT, interface)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        rpc_url="http://fake-node:8545",
        contract_address=CONTRACT,
        log_chain_events=False,
        block_poll_interval_seconds=60,
        retry_base_delay_ms=0,
    )
