"""
Safety and configuration tests for the arena trader.
"""
import os
import pytest
from unittest.mock import patch

from arena_trader.config import TradingConfig, TradingMode, load_config
from arena_trader.errors import AuthenticationFailed, LiveTradingDisabled
from arena_trader.exchange.client import AsterClient
from arena_trader.exchange.factory import OrderClientFactory
from arena_trader.exchange.paper import PaperOrderClient
from arena_trader.exchange.wallet import resolve_wallet
from arena_trader.agents.market_data import PriceCache
from arena_trader.metrics import display_status, leaderboard
from arena_trader.schemas import Agent, AgentStatus


class TestSafetyLatches:
    """Live trading stays off unless explicitly enabled."""

    def test_default_config_is_not_live(self):
        """Default configuration never trades live."""
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
            assert cfg.live_trading_enabled is False
            assert cfg.can_trade_live() is False
            assert cfg.exposure_ceiling == 0.70
            assert cfg.cycle_seconds == 30.0
            assert cfg.recv_window_ms == 50000

    def test_latch_only_accepts_true(self):
        with patch.dict(os.environ, {"LIVE_TRADING_ENABLED": "yes"}, clear=True):
            assert load_config().can_trade_live() is False
        with patch.dict(os.environ, {"LIVE_TRADING_ENABLED": "TRUE"}, clear=True):
            assert load_config().can_trade_live() is True

    def test_mode_description(self):
        cfg = TradingConfig()
        assert "Blocked" in cfg.get_mode_description(TradingMode.LIVE)
        assert cfg.get_mode_description(TradingMode.PAPER).startswith("PAPER")


class TestConfigValidation:
    """Settings the engine cannot run with are rejected at startup."""

    @pytest.mark.parametrize("ceiling", [0.0, -0.1, 1.5])
    def test_exposure_ceiling_bounds(self, ceiling):
        with pytest.raises(ValueError, match="EXPOSURE_CEILING"):
            TradingConfig(exposure_ceiling=ceiling)

    def test_non_positive_intervals(self):
        with pytest.raises(ValueError):
            TradingConfig(cycle_seconds=0)

    def test_env_values_are_parsed(self):
        env = {"EXPOSURE_CEILING": "0.5", "CYCLE_SECONDS": "10", "QUOTE_ASSET": "usdc"}
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        assert cfg.exposure_ceiling == 0.5
        assert cfg.cycle_seconds == 10.0
        assert cfg.quote_asset == "USDC"


class TestWalletResolution:

    def test_per_agent_key(self, live_agent, credentials):
        creds = resolve_wallet(live_agent, {"AGENT_BRAVO_PRIVATE_KEY": credentials.private_key})
        assert creds.user == credentials.user
        assert creds.signer == credentials.signer
        assert credentials.private_key not in repr(creds)

    def test_shared_wallet_fallback(self, credentials):
        agent = Agent(name="Charlie", trading_mode=TradingMode.LIVE)
        env = {
            "SHARED_ASTER_USER": credentials.user,
            "SHARED_ASTER_SIGNER": credentials.signer,
            "SHARED_ASTER_PRIVATE_KEY": credentials.private_key,
        }
        assert resolve_wallet(agent, env).user == credentials.user

    def test_missing_credentials_raise(self, live_agent):
        with pytest.raises(AuthenticationFailed):
            resolve_wallet(live_agent, {})


class TestClientFactory:

    @pytest.fixture
    def cache(self):
        return PriceCache()

    def test_paper_agents_share_paper_client(self, config, cache, paper_agent):
        factory = OrderClientFactory(config, cache, environ={})
        client = factory.for_agent(paper_agent)
        assert isinstance(client, PaperOrderClient)
        assert factory.for_agent(paper_agent) is client

    def test_live_agent_needs_latch(self, config, cache, live_agent, credentials):
        factory = OrderClientFactory(config, cache, environ={"AGENT_BRAVO_PRIVATE_KEY": credentials.private_key})
        with pytest.raises(LiveTradingDisabled):
            factory.for_agent(live_agent)

    def test_live_agent_with_latch(self, config, cache, live_agent, credentials):
        config.live_trading_enabled = True
        factory = OrderClientFactory(config, cache, environ={"AGENT_BRAVO_PRIVATE_KEY": credentials.private_key})
        client = factory.for_agent(live_agent)
        assert isinstance(client, AsterClient)
        assert factory.for_agent(live_agent) is client

    def test_live_agent_without_wallet(self, config, cache, live_agent):
        config.live_trading_enabled = True
        factory = OrderClientFactory(config, cache, environ={})
        with pytest.raises(AuthenticationFailed):
            factory.for_agent(live_agent)


class TestDisplayStatus:
    """Status is derived from balance only."""

    @pytest.mark.parametrize("balance,expected", [
        (1000.0, AgentStatus.ACTIVE),
        (499.0, AgentStatus.SLOW),
        (99.0, AgentStatus.ERROR),
    ])
    def test_thresholds(self, config, balance, expected):
        agent = Agent(name="A", initial_balance=1000.0, balance=balance)
        assert display_status(agent, config) == expected

    def test_leaderboard_ranks_by_pnl(self):
        agents = [
            Agent(name="Low", pnl=-2.0),
            Agent(name="High", pnl=5.0),
        ]
        rows = leaderboard(agents)
        assert [r["name"] for r in rows] == ["High", "Low"]
        assert rows[0]["rank"] == 1
