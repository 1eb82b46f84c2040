"""
RiskGate - Deterministic gatekeeper between the decision collaborator and execution.

Rules enforced:
- symbol must have a current price
- no pyramiding (one open position per symbol)
- exposure ceiling on open notional / balance
- closes only for symbols the agent actually holds
- stop-loss / take-profit on the correct side of entry, defaulted when missing
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..config import TradingConfig
from ..errors import DuplicateExposure, ExposureExceeded
from ..schemas import (
    Agent,
    CloseDecision,
    Direction,
    OpenDecision,
    PositionRequest,
    RiskResult,
)
from .ledger import PositionLedger

logger = logging.getLogger("arena_trader.agents.risk_gate")


class RiskGate:
    """The hard wall before execution."""

    def __init__(self, config: TradingConfig, ledger: PositionLedger):
        self.config = config
        self.ledger = ledger

    def size_notional(self, decision: OpenDecision, balance: float) -> float:
        """size_usd is taken as notional; size_pct is margin as % of balance, times leverage."""
        if decision.size_usd is not None:
            return decision.size_usd
        return balance * decision.size_pct / 100 * decision.leverage

    def protective_levels(
        self,
        direction: Direction,
        entry: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> Tuple[float, float, List[str]]:
        """Default or correct stop/target so they sit on the right side of entry."""
        notes = []
        sl_pct = self.config.default_stop_loss_pct / 100
        tp_pct = self.config.default_take_profit_pct / 100

        if direction == Direction.LONG:
            default_sl, default_tp = entry * (1 - sl_pct), entry * (1 + tp_pct)
            sl_ok = stop_loss is not None and stop_loss < entry
            tp_ok = take_profit is not None and take_profit > entry
        else:
            default_sl, default_tp = entry * (1 + sl_pct), entry * (1 - tp_pct)
            sl_ok = stop_loss is not None and stop_loss > entry
            tp_ok = take_profit is not None and take_profit < entry

        if not sl_ok:
            if stop_loss is not None:
                notes.append(f"stop_loss {stop_loss} on wrong side of entry {entry}, reset to default")
            stop_loss = default_sl
        if not tp_ok:
            if take_profit is not None:
                notes.append(f"take_profit {take_profit} on wrong side of entry {entry}, reset to default")
            take_profit = default_tp
        return stop_loss, take_profit, notes

    def validate(self, decision, agent: Agent, prices: Dict[str, float]) -> RiskResult:
        if isinstance(decision, OpenDecision):
            return self._validate_open(decision, agent, prices)
        if isinstance(decision, CloseDecision):
            return self._validate_close(decision, agent)
        return RiskResult(allowed=False, decision=decision, notes=[f"no action ({decision.action})"])

    def _validate_open(self, decision: OpenDecision, agent: Agent, prices: Dict[str, float]) -> RiskResult:
        entry = prices.get(decision.symbol)
        if entry is None:
            return self._block(decision, f"no current price for {decision.symbol}")

        notional = self.size_notional(decision, agent.balance)
        if notional <= 0:
            return self._block(decision, f"non-positive notional {notional:.2f}")

        try:
            self.ledger.check_open(agent, decision.symbol, notional)
        except (DuplicateExposure, ExposureExceeded) as e:
            return self._block(decision, str(e), error_type=type(e).__name__)

        stop_loss, take_profit, notes = self.protective_levels(
            decision.direction, entry, decision.stop_loss, decision.take_profit
        )
        request = PositionRequest(
            symbol=decision.symbol,
            direction=decision.direction,
            entry_price=entry,
            notional_usd=notional,
            leverage=decision.leverage,
            stop_loss=stop_loss,
            take_profit=take_profit,
            confidence=decision.confidence,
            rationale=decision.rationale,
            expected_duration=decision.expected_duration,
        )
        return RiskResult(allowed=True, decision=decision, request=request, notes=notes)

    def _validate_close(self, decision: CloseDecision, agent: Agent) -> RiskResult:
        if self.ledger.find_open(agent.id, decision.symbol) is None:
            return self._block(decision, f"no open position in {decision.symbol}")
        return RiskResult(allowed=True, decision=decision)

    @staticmethod
    def _block(decision, violation: str, error_type: Optional[str] = None) -> RiskResult:
        logger.info(f"RISK GATE BLOCKED: {decision.action} {decision.symbol} - {violation}")
        return RiskResult(allowed=False, decision=decision, violations=[violation], error_type=error_type)
