"""
BalanceReconciler tests - paper summation and live overwrite with soft failure.
"""
import pytest
from unittest.mock import AsyncMock

from arena_trader.agents.reconciler import BalanceReconciler
from arena_trader.errors import ExchangeRejected, NetworkError
from arena_trader.schemas import Direction, PositionRequest


def request(symbol, entry, notional=100.0, direction=Direction.LONG):
    return PositionRequest(
        symbol=symbol,
        direction=direction,
        entry_price=entry,
        notional_usd=notional,
        leverage=10,
        stop_loss=entry * 0.5 if direction == Direction.LONG else entry * 1.5,
        take_profit=entry * 1.5 if direction == Direction.LONG else entry * 0.5,
    )


@pytest.fixture
def reconciler(ledger):
    return BalanceReconciler(ledger)


class TestPaperReconcile:

    @pytest.mark.asyncio
    async def test_btc_scenario_reconciles_to_1001(self, reconciler, ledger, paper_agent):
        """1000 balance, $100 long BTC @ 50,000, price 50,500 -> +1% / +$1 -> 1001."""
        ledger.open_position(paper_agent, request("BTC", 50000.0))
        result = await reconciler.reconcile(paper_agent, {"BTC": 50500.0})

        assert result.unrealized_pnl == pytest.approx(1.0)
        assert paper_agent.balance == pytest.approx(1001.0)
        assert paper_agent.pnl_absolute == pytest.approx(1.0)
        assert paper_agent.pnl == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_balance_identity_with_realized_and_unrealized(self, reconciler, ledger, paper_agent):
        btc, _ = ledger.open_position(paper_agent, request("BTC", 100.0))
        ledger.open_position(paper_agent, request("ETH", 200.0, notional=50.0, direction=Direction.SHORT))
        ledger.close_position(btc, 110.0, "target")

        await reconciler.reconcile(paper_agent, {"ETH": 180.0})
        # realized +10 on BTC, unrealized +5 on the ETH short
        assert paper_agent.balance == pytest.approx(1000.0 + 10.0 + 5.0)

    @pytest.mark.asyncio
    async def test_idempotent(self, reconciler, ledger, paper_agent):
        ledger.open_position(paper_agent, request("BTC", 100.0))
        prices = {"BTC": 97.0}
        first = await reconciler.reconcile(paper_agent, prices)
        second = await reconciler.reconcile(paper_agent, prices)
        assert first.balance == second.balance == pytest.approx(997.0)

    @pytest.mark.asyncio
    async def test_win_rate_only_updated_with_exits(self, reconciler, ledger, paper_agent):
        await reconciler.reconcile(paper_agent, {})
        assert paper_agent.win_rate == 50.0
        assert paper_agent.total_trades == 0

        win, _ = ledger.open_position(paper_agent, request("BTC", 100.0))
        ledger.close_position(win, 105.0, "win")
        loss, _ = ledger.open_position(paper_agent, request("ETH", 100.0))
        ledger.close_position(loss, 90.0, "loss")
        third, _ = ledger.open_position(paper_agent, request("SOL", 100.0))
        ledger.close_position(third, 120.0, "win")

        await reconciler.reconcile(paper_agent, {})
        assert paper_agent.total_trades == 3
        assert paper_agent.win_rate == pytest.approx(200 / 3)

    @pytest.mark.asyncio
    async def test_persists_agent(self, reconciler, ledger, store, paper_agent):
        ledger.open_position(paper_agent, request("BTC", 100.0))
        await reconciler.reconcile(paper_agent, {"BTC": 102.0})
        assert store.get_agent(paper_agent.id).balance == pytest.approx(1002.0)


class TestLiveReconcile:

    @pytest.mark.asyncio
    async def test_exchange_balance_overwrites(self, reconciler, live_agent):
        client = AsyncMock()
        client.get_balance.return_value = 1234.56
        result = await reconciler.reconcile(live_agent, {}, client)

        client.get_balance.assert_awaited_once_with("USDT")
        assert result.soft_failure is False
        assert live_agent.balance == 1234.56
        assert live_agent.pnl_absolute == pytest.approx(234.56)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        NetworkError("timeout"),
        ExchangeRejected(code=-1022, message="Signature for this request is not valid.", status_code=401),
    ])
    async def test_failure_keeps_last_balance(self, reconciler, live_agent, error):
        live_agent.balance = 987.0
        client = AsyncMock()
        client.get_balance.side_effect = error

        result = await reconciler.reconcile(live_agent, {}, client)

        assert result.soft_failure is True
        assert result.error_type == type(error).__name__
        assert live_agent.balance == 987.0
