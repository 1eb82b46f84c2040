"""
Shared fixtures for arena trader tests.

Provides a throwaway config, in-memory store, a ledger and sample agents, plus
a fixed test wallet so signing tests are reproducible.
"""
import sys
from pathlib import Path

root_dir = Path(__file__).parent.parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

import pytest

from arena_trader.agents.ledger import PositionLedger
from arena_trader.config import TradingConfig, TradingMode
from arena_trader.exchange.wallet import WalletCredentials
from arena_trader.schemas import Agent
from arena_trader.storage import InMemoryStore

pytest_plugins = ('pytest_asyncio',)

# Well-known development keys (hardhat accounts #0 and #1). Never funded.
TEST_SIGNER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_SIGNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TEST_USER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.fixture
def config(tmp_path):
    return TradingConfig(
        openai_api_key="test-key",
        data_dir=str(tmp_path / "data"),
        price_cache_seconds=0.0,
        decision_timeout_seconds=0.2,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def ledger(store, config):
    return PositionLedger(store, exposure_ceiling=config.exposure_ceiling)


@pytest.fixture
def paper_agent(store):
    agent = Agent(name="Alpha", strategy="momentum", initial_balance=1000.0, balance=1000.0)
    store.save_agent(agent)
    return agent


@pytest.fixture
def live_agent(store):
    agent = Agent(
        name="Bravo",
        strategy="mean reversion",
        trading_mode=TradingMode.LIVE,
        initial_balance=1000.0,
        balance=1000.0,
        aster_user_address=TEST_USER_ADDRESS,
        aster_signer_address=TEST_SIGNER_ADDRESS,
    )
    store.save_agent(agent)
    return agent


@pytest.fixture
def credentials():
    return WalletCredentials(
        user=TEST_USER_ADDRESS,
        signer=TEST_SIGNER_ADDRESS,
        private_key=TEST_SIGNER_KEY,
    )
