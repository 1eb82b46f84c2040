"""
PositionLedger tests - PnL math, invariants and the close idempotency guard.
"""
import pytest

from arena_trader.agents.ledger import PositionLedger, pnl_percent
from arena_trader.errors import DuplicateExposure, ExposureExceeded, PositionAlreadyClosed
from arena_trader.schemas import (
    Direction,
    ExitTrigger,
    Position,
    PositionRequest,
    PositionStatus,
    TradeKind,
)


def make_request(symbol="BTC", direction=Direction.LONG, entry=50000.0, notional=100.0, **kwargs):
    defaults = {
        "leverage": 5,
        "stop_loss": entry * (0.98 if direction == Direction.LONG else 1.02),
        "take_profit": entry * (1.03 if direction == Direction.LONG else 0.97),
        "rationale": "test entry",
    }
    defaults.update(kwargs)
    return PositionRequest(symbol=symbol, direction=direction, entry_price=entry, notional_usd=notional, **defaults)


class TestPnlMath:

    def test_long_up_ten_percent(self):
        assert pnl_percent(Direction.LONG, 100.0, 110.0) == pytest.approx(10.0)

    def test_short_up_is_loss(self):
        assert pnl_percent(Direction.SHORT, 100.0, 110.0) == pytest.approx(-10.0)

    def test_unrealized_on_full_notional(self, ledger, paper_agent):
        position, _ = ledger.open_position(paper_agent, make_request(entry=100.0, notional=200.0, leverage=10,
                                                                     stop_loss=90.0, take_profit=120.0))
        pct, usd = ledger.unrealized_pnl(position, 110.0)
        assert pct == pytest.approx(10.0)
        assert usd == pytest.approx(20.0)

    def test_unrealized_without_price_is_zero(self, ledger, paper_agent):
        position, _ = ledger.open_position(paper_agent, make_request())
        assert ledger.unrealized_pnl(position, None) == (0.0, 0.0)


class TestOpenInvariants:

    def test_open_writes_position_and_entry_trade(self, ledger, store, paper_agent):
        position, trade = ledger.open_position(paper_agent, make_request())
        assert store.get_position(position.id).status == PositionStatus.OPEN
        assert trade.kind == TradeKind.ENTRY
        assert trade.position_id == position.id
        assert trade.opened_at == position.opened_at
        assert trade.pnl_usd == 0.0

    def test_no_pyramiding(self, ledger, store, paper_agent):
        ledger.open_position(paper_agent, make_request())
        with pytest.raises(DuplicateExposure):
            ledger.open_position(paper_agent, make_request(notional=50.0))
        assert len(store.list_positions(agent_id=paper_agent.id)) == 1

    def test_same_symbol_allowed_for_other_agents(self, ledger, paper_agent, live_agent):
        ledger.open_position(paper_agent, make_request())
        ledger.open_position(live_agent, make_request())

    def test_exposure_ceiling(self, ledger, paper_agent):
        ledger.open_position(paper_agent, make_request(symbol="BTC", notional=400.0))
        ledger.open_position(paper_agent, make_request(symbol="ETH", entry=2500.0, notional=300.0))
        with pytest.raises(ExposureExceeded):
            ledger.open_position(paper_agent, make_request(symbol="SOL", entry=100.0, notional=1.0))
        assert ledger.exposure(paper_agent.id) == pytest.approx(700.0)

    def test_zero_balance_blocks_opens(self, ledger, paper_agent):
        paper_agent.balance = 0.0
        with pytest.raises(ExposureExceeded):
            ledger.open_position(paper_agent, make_request(notional=1.0))

    def test_leverage_must_be_allowed_value(self):
        with pytest.raises(ValueError):
            make_request(leverage=7)


class TestEvaluateExit:

    @pytest.fixture
    def long_position(self):
        return Position(agent_id="a", symbol="BTC", direction=Direction.LONG, entry_price=100.0,
                        leverage=5, notional_usd=100.0, stop_loss=95.0, take_profit=110.0)

    @pytest.fixture
    def short_position(self):
        return Position(agent_id="a", symbol="BTC", direction=Direction.SHORT, entry_price=100.0,
                        leverage=5, notional_usd=100.0, stop_loss=105.0, take_profit=90.0)

    def test_long(self, long_position):
        assert PositionLedger.evaluate_exit(long_position, 100.0) == ExitTrigger.NONE
        assert PositionLedger.evaluate_exit(long_position, 95.0) == ExitTrigger.STOP_LOSS
        assert PositionLedger.evaluate_exit(long_position, 111.0) == ExitTrigger.TAKE_PROFIT

    def test_short_is_inverted(self, short_position):
        assert PositionLedger.evaluate_exit(short_position, 100.0) == ExitTrigger.NONE
        assert PositionLedger.evaluate_exit(short_position, 106.0) == ExitTrigger.STOP_LOSS
        assert PositionLedger.evaluate_exit(short_position, 89.0) == ExitTrigger.TAKE_PROFIT

    def test_no_price_no_exit(self, long_position):
        assert PositionLedger.evaluate_exit(long_position, None) == ExitTrigger.NONE


class TestClosePosition:

    def test_close_realizes_pnl_and_frees_slot(self, ledger, store, paper_agent):
        position, entry = ledger.open_position(paper_agent, make_request(entry=50000.0, notional=100.0))
        closed, exit_trade = ledger.close_position(position, 50500.0, "take profit")

        assert closed.status == PositionStatus.CLOSED
        assert closed.exit_price == 50500.0
        assert exit_trade.kind == TradeKind.EXIT
        assert exit_trade.pnl_pct == pytest.approx(1.0)
        assert exit_trade.pnl_usd == pytest.approx(1.0)
        assert exit_trade.opened_at == entry.opened_at
        assert ledger.find_open(paper_agent.id, "BTC") is None

        ledger.open_position(paper_agent, make_request(entry=50500.0))

    def test_short_close_loss(self, ledger, paper_agent):
        position, _ = ledger.open_position(paper_agent, make_request(direction=Direction.SHORT, entry=100.0,
                                                                     notional=100.0))
        _, trade = ledger.close_position(position, 110.0, "stop loss")
        assert trade.pnl_pct == pytest.approx(-10.0)
        assert trade.pnl_usd == pytest.approx(-10.0)

    def test_double_close_raises_and_does_not_double_apply(self, ledger, store, paper_agent):
        position, _ = ledger.open_position(paper_agent, make_request())
        ledger.close_position(position, 51000.0, "first")
        with pytest.raises(PositionAlreadyClosed):
            ledger.close_position(position, 52000.0, "second")

        exits = store.list_trades(agent_id=paper_agent.id, kind=TradeKind.EXIT)
        assert len(exits) == 1
        assert store.get_position(position.id).exit_price == 51000.0


class TestSweep:

    def test_mark_to_market_and_check_exits(self, ledger, store, paper_agent):
        btc, _ = ledger.open_position(paper_agent, make_request(symbol="BTC", entry=50000.0))
        ledger.open_position(paper_agent, make_request(symbol="ETH", entry=2500.0))

        marked = ledger.mark_to_market(paper_agent.id, {"BTC": 50500.0})
        stored = store.get_position(btc.id)
        assert stored.current_price == 50500.0
        assert stored.pnl_pct == pytest.approx(1.0)
        assert len(marked) == 2

        triggered = ledger.check_exits(paper_agent.id, {"BTC": 52000.0, "ETH": 2400.0})
        assert {(p.symbol, t) for p, t in triggered} == {
            ("BTC", ExitTrigger.TAKE_PROFIT),
            ("ETH", ExitTrigger.STOP_LOSS),
        }
