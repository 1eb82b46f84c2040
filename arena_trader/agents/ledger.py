"""
PositionLedger - Authoritative view of every agent's open and closed positions.

Rules enforced:
- at most one open position per (agent, symbol), no pyramiding
- open notional / balance stays within the exposure ceiling
- a position closes exactly once; the exit trade is written with the close

PnL is measured on the full leveraged notional: a 1% price move on a
$100 notional position is $1, whatever the leverage.
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..errors import DuplicateExposure, ExposureExceeded, PositionAlreadyClosed
from ..schemas import (
    Agent,
    Direction,
    ExitTrigger,
    Position,
    PositionRequest,
    PositionStatus,
    Trade,
    TradeKind,
    utcnow,
)
from ..storage import TradingStore

logger = logging.getLogger("arena_trader.agents.ledger")


def pnl_percent(direction: Direction, entry_price: float, price: float) -> float:
    """Signed price move in percent, oriented by direction."""
    if direction == Direction.LONG:
        return (price - entry_price) / entry_price * 100
    return (entry_price - price) / entry_price * 100


class PositionLedger:
    """Position bookkeeping on top of a TradingStore."""

    def __init__(self, store: TradingStore, exposure_ceiling: float = 0.70):
        self.store = store
        self.exposure_ceiling = exposure_ceiling

    def open_positions(self, agent_id: str) -> List[Position]:
        return self.store.list_positions(agent_id=agent_id, status=PositionStatus.OPEN)

    def find_open(self, agent_id: str, symbol: str) -> Optional[Position]:
        for position in self.open_positions(agent_id):
            if position.symbol == symbol:
                return position
        return None

    def exposure(self, agent_id: str) -> float:
        """Sum of open notional in quote currency."""
        return sum(p.notional_usd for p in self.open_positions(agent_id))

    def check_open(self, agent: Agent, symbol: str, notional_usd: float):
        """
        Raise if opening `notional_usd` on `symbol` would break an invariant.

        Raises:
            DuplicateExposure: an open position already exists for the symbol
            ExposureExceeded: projected exposure is above the ceiling
        """
        if self.find_open(agent.id, symbol) is not None:
            raise DuplicateExposure(agent.id, symbol)

        projected_notional = self.exposure(agent.id) + notional_usd
        if agent.balance <= 0:
            raise ExposureExceeded(float("inf"), self.exposure_ceiling)
        projected = projected_notional / agent.balance
        if projected > self.exposure_ceiling:
            raise ExposureExceeded(projected, self.exposure_ceiling)

    def open_position(self, agent: Agent, request: PositionRequest) -> Tuple[Position, Trade]:
        """Record a filled entry: the Position plus its entry Trade."""
        self.check_open(agent, request.symbol, request.notional_usd)

        position = Position(
            agent_id=agent.id,
            agent_name=agent.name,
            symbol=request.symbol,
            direction=request.direction,
            entry_price=request.entry_price,
            current_price=request.entry_price,
            leverage=request.leverage,
            notional_usd=request.notional_usd,
            quantity=request.quantity,
            stop_loss=request.stop_loss,
            take_profit=request.take_profit,
            confidence=request.confidence,
            expected_duration=request.expected_duration,
            rationale=request.rationale,
            exchange_order_id=request.exchange_order_id,
        )
        self.store.create_position(position)

        trade = Trade(
            agent_id=agent.id,
            agent_name=agent.name,
            position_id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            kind=TradeKind.ENTRY,
            price=position.entry_price,
            notional_usd=position.notional_usd,
            leverage=position.leverage,
            confidence=position.confidence,
            rationale=position.rationale,
            opened_at=position.opened_at,
        )
        self.store.append_trade(trade)

        logger.info(
            f"POSITION OPENED: {agent.name} {position.direction.value.upper()} {position.symbol} "
            f"${position.notional_usd:.2f} @ {position.entry_price} ({position.leverage}x) "
            f"SL {position.stop_loss} TP {position.take_profit}"
        )
        return position, trade

    @staticmethod
    def evaluate_exit(position: Position, current_price: Optional[float]) -> ExitTrigger:
        if current_price is None:
            return ExitTrigger.NONE
        if position.direction == Direction.LONG:
            if current_price <= position.stop_loss:
                return ExitTrigger.STOP_LOSS
            if current_price >= position.take_profit:
                return ExitTrigger.TAKE_PROFIT
        else:
            if current_price >= position.stop_loss:
                return ExitTrigger.STOP_LOSS
            if current_price <= position.take_profit:
                return ExitTrigger.TAKE_PROFIT
        return ExitTrigger.NONE

    def close_position(self, position: Position, exit_price: float, reason: str) -> Tuple[Position, Trade]:
        """
        Close an open position and append its exit Trade.

        Raises:
            PositionAlreadyClosed: the stored position is not open
        """
        stored = self.store.get_position(position.id)
        if stored is None or not stored.is_open:
            raise PositionAlreadyClosed(position.id)

        pct = pnl_percent(stored.direction, stored.entry_price, exit_price)
        usd = pct / 100 * stored.notional_usd

        stored.status = PositionStatus.CLOSED
        stored.exit_price = exit_price
        stored.current_price = exit_price
        stored.closed_at = utcnow()
        stored.pnl_pct = pct
        stored.pnl_usd = usd
        stored.close_reason = reason
        self.store.update_position(stored)

        trade = Trade(
            agent_id=stored.agent_id,
            agent_name=stored.agent_name,
            position_id=stored.id,
            symbol=stored.symbol,
            direction=stored.direction,
            kind=TradeKind.EXIT,
            price=exit_price,
            notional_usd=stored.notional_usd,
            leverage=stored.leverage,
            pnl_pct=pct,
            pnl_usd=usd,
            confidence=stored.confidence,
            rationale=reason,
            opened_at=stored.opened_at,
        )
        self.store.append_trade(trade)

        logger.info(
            f"POSITION CLOSED: {stored.agent_name} {stored.symbol} @ {exit_price} "
            f"PnL {pct:+.2f}% (${usd:+.2f}) - {reason}"
        )
        return stored, trade

    @staticmethod
    def unrealized_pnl(position: Position, current_price: Optional[float]) -> Tuple[float, float]:
        """(pct, usd) at current_price; (0, 0) when no price is known."""
        if current_price is None:
            return 0.0, 0.0
        pct = pnl_percent(position.direction, position.entry_price, current_price)
        return pct, pct / 100 * position.notional_usd

    def mark_to_market(self, agent_id: str, prices: Dict[str, float]) -> List[Position]:
        """Refresh current price and unrealized PnL of every open position."""
        marked = []
        for position in self.open_positions(agent_id):
            price = prices.get(position.symbol)
            if price is None:
                marked.append(position)
                continue
            position.current_price = price
            position.pnl_pct, position.pnl_usd = self.unrealized_pnl(position, price)
            self.store.update_position(position)
            marked.append(position)
        return marked

    def check_exits(self, agent_id: str, prices: Dict[str, float]) -> List[Tuple[Position, ExitTrigger]]:
        """Open positions whose stop-loss or take-profit was crossed."""
        triggered = []
        for position in self.open_positions(agent_id):
            trigger = self.evaluate_exit(position, prices.get(position.symbol))
            if trigger != ExitTrigger.NONE:
                triggered.append((position, trigger))
        return triggered
