"""
BalanceReconciler - Recomputes an agent's balance after its turn.

Paper: initial balance + realized PnL of all exits + unrealized PnL of open positions.
Live:  the exchange wallet balance, taken as-is. A failed query keeps the last
       known balance and reports a soft failure.
"""
import logging
from typing import Dict, Optional

import httpx
from pydantic import BaseModel

from ..config import TradingMode
from ..errors import TradingError
from ..schemas import Agent, TradeKind, utcnow
from .ledger import PositionLedger

logger = logging.getLogger("arena_trader.agents.reconciler")


class ReconcileResult(BaseModel):
    agent_id: str
    trading_mode: TradingMode
    previous_balance: float
    balance: float
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    soft_failure: bool = False
    error_type: Optional[str] = None
    error: Optional[str] = None


class BalanceReconciler:
    def __init__(self, ledger: PositionLedger, quote_asset: str = "USDT"):
        self.ledger = ledger
        self.store = ledger.store
        self.quote_asset = quote_asset

    def paper_balance(self, agent: Agent, prices: Dict[str, float]) -> ReconcileResult:
        """Pure recomputation; running it twice on the same inputs changes nothing."""
        exits = self.store.list_trades(agent_id=agent.id, kind=TradeKind.EXIT)
        realized = sum(t.pnl_usd for t in exits)
        unrealized = sum(
            self.ledger.unrealized_pnl(p, prices.get(p.symbol))[1]
            for p in self.ledger.open_positions(agent.id)
        )
        balance = agent.initial_balance + realized + unrealized
        return ReconcileResult(
            agent_id=agent.id,
            trading_mode=TradingMode.PAPER,
            previous_balance=agent.balance,
            balance=balance,
            realized_pnl=realized,
            unrealized_pnl=unrealized,
        )

    async def live_balance(self, agent: Agent, client) -> ReconcileResult:
        try:
            balance = await client.get_balance(self.quote_asset)
        except (TradingError, httpx.HTTPError) as e:
            logger.warning(f"RECONCILE SOFT FAILURE: {agent.name} keeps ${agent.balance:.2f} ({e})")
            return ReconcileResult(
                agent_id=agent.id,
                trading_mode=TradingMode.LIVE,
                previous_balance=agent.balance,
                balance=agent.balance,
                soft_failure=True,
                error_type=type(e).__name__,
                error=str(e),
            )
        return ReconcileResult(
            agent_id=agent.id,
            trading_mode=TradingMode.LIVE,
            previous_balance=agent.balance,
            balance=balance,
        )

    def _update_trade_stats(self, agent: Agent):
        exits = self.store.list_trades(agent_id=agent.id, kind=TradeKind.EXIT)
        if not exits:
            return
        winners = [t for t in exits if t.pnl_usd > 0]
        agent.win_rate = len(winners) / len(exits) * 100
        agent.total_trades = len(exits)

    async def reconcile(self, agent: Agent, prices: Dict[str, float], client=None) -> ReconcileResult:
        """Update the agent's balance, PnL and trade stats in place and persist them."""
        if agent.trading_mode == TradingMode.LIVE:
            result = await self.live_balance(agent, client)
        else:
            result = self.paper_balance(agent, prices)

        agent.balance = result.balance
        agent.pnl_absolute = agent.balance - agent.initial_balance
        agent.pnl = agent.pnl_absolute / agent.initial_balance * 100
        self._update_trade_stats(agent)
        agent.updated_at = utcnow()
        self.store.save_agent(agent)

        if result.balance != result.previous_balance:
            logger.debug(
                f"{agent.name} balance ${result.previous_balance:.2f} -> ${result.balance:.2f} "
                f"({agent.pnl:+.2f}%)"
            )
        return result
