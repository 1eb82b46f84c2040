"""
Orchestrator - Top-level conductor of one trading cycle.

Per agent, in strict order:
  client -> mark-to-market -> exit sweep -> decide -> gate + execute -> sync -> reconcile

Every step is wrapped so a failure is recorded on the turn result and the
remaining steps (or agents) still run. Nothing escapes run_cycle.
"""
import asyncio
import logging
import time
from typing import Dict, List, Optional

import httpx

from ..config import TradingConfig
from ..errors import (
    DuplicateExposure,
    ExposureExceeded,
    MarketDataUnavailable,
    PositionAlreadyClosed,
    TradingError,
)
from ..exchange.factory import OrderClientFactory
from ..exchange.symbols import to_coin
from ..metrics import display_status
from ..schemas import (
    Agent,
    AgentTurnResult,
    CloseDecision,
    CycleFailure,
    CycleSummary,
    DecisionRecord,
    OpenDecision,
    Trade,
    TurnFailure,
    utcnow,
)
from ..storage import TradingStore
from .decision import DecisionAgent, build_decision_request
from .execution import ExecutionAgent
from .ledger import PositionLedger
from .market_data import MarketDataAgent
from .observability import ObservabilityAgent
from .reconciler import BalanceReconciler
from .risk_gate import RiskGate

logger = logging.getLogger("arena_trader.agents.orchestrator")

# Failures that cost one action or one step, never the whole turn.
STEP_ERRORS = (TradingError, httpx.HTTPError, ValueError)


class Orchestrator:
    """
    Runs the trading cycle for every agent in the store.

    Strict handoff order per agent:
    1. OrderClientFactory - paper or live client for the agent
    2. PositionLedger - mark open positions to market
    3. PositionLedger - client-side stop-loss / take-profit sweep (paper)
    4. DecisionAgent - ask the collaborator
    5. RiskGate + ExecutionAgent - validate and place each decision
    6. Exchange sync - record positions closed by native SL/TP (live)
    7. BalanceReconciler - recompute balance after all closes
    """

    def __init__(
        self,
        config: TradingConfig,
        store: TradingStore,
        market_data: MarketDataAgent,
        decision: DecisionAgent,
        clients: OrderClientFactory,
        observability: Optional[ObservabilityAgent] = None,
    ):
        self.config = config
        self.store = store
        self.market_data = market_data
        self.decision = decision
        self.clients = clients
        self.observability = observability

        self.ledger = PositionLedger(store, exposure_ceiling=config.exposure_ceiling)
        self.risk_gate = RiskGate(config, self.ledger)
        self.execution = ExecutionAgent(self.ledger, quote_asset=config.quote_asset)
        self.reconciler = BalanceReconciler(self.ledger, quote_asset=config.quote_asset)

    def _record_trade(self, trade: Trade):
        if self.observability:
            self.observability.log_trade(trade)

    async def run_cycle(self) -> CycleSummary:
        """Run one cycle over all agents. Never raises."""
        start_time = time.time()
        summary = CycleSummary()
        logger.info(f"=== CYCLE START {summary.cycle_id[:8]} ===")

        try:
            market = await self.market_data.get_market_data()
            prices, volatility = market.prices, market.volatility
        except MarketDataUnavailable as e:
            prices, volatility = {}, {}
            summary.prices_available = False
            summary.failures.append(CycleFailure(stage="fetch", error_type=type(e).__name__, message=str(e)))

        agents = self.store.list_agents()
        results = await asyncio.gather(
            *(self.run_agent_turn(agent, prices, volatility) for agent in agents),
            return_exceptions=True,
        )

        for agent, result in zip(agents, results):
            if isinstance(result, BaseException):
                logger.error(f"Agent turn crashed for {agent.name}: {result!r}")
                summary.agents_processed += 1
                summary.failures.append(CycleFailure(
                    agent_id=agent.id,
                    agent_name=agent.name,
                    stage="turn",
                    error_type=type(result).__name__,
                    message=str(result),
                ))
            else:
                summary.add_turn(result)

        summary.finished_at = utcnow()
        summary.duration_ms = (time.time() - start_time) * 1000
        if self.observability:
            self.observability.log_cycle(summary)
        logger.info(f"=== CYCLE COMPLETE ({summary.duration_ms:.0f}ms) ===")
        return summary

    async def run_agent_turn(
        self,
        agent: Agent,
        prices: Dict[str, float],
        volatility: Optional[Dict[str, float]] = None,
    ) -> AgentTurnResult:
        start_time = time.time()
        turn = AgentTurnResult(
            agent_id=agent.id,
            agent_name=agent.name,
            trading_mode=agent.trading_mode,
            balance_before=agent.balance,
            balance_after=agent.balance,
        )

        try:
            client = self.clients.for_agent(agent)
        except TradingError as e:
            logger.error(f"CLIENT UNAVAILABLE: {agent.name} - {e}")
            turn.fail("client", e)
            turn.duration_ms = (time.time() - start_time) * 1000
            return turn

        self.ledger.mark_to_market(agent.id, prices)

        if not agent.is_live:
            await self._sweep_exits(agent, prices, client, turn)

        if prices:
            await self._decide_and_execute(agent, prices, volatility, client, turn)
        else:
            turn.skipped.append("decide: no market prices this cycle")

        if agent.is_live:
            await self._sync_live_positions(agent, prices, client, turn)

        if prices or agent.is_live:
            result = await self.reconciler.reconcile(agent, prices, client)
            if result.soft_failure:
                turn.soft_failure = True
                turn.failures.append(TurnFailure(
                    stage="reconcile",
                    error_type=result.error_type or "Unknown",
                    message=result.error or "",
                ))

        agent.status = display_status(agent, self.config)
        agent.updated_at = utcnow()
        self.store.save_agent(agent)

        turn.balance_after = agent.balance
        turn.duration_ms = (time.time() - start_time) * 1000
        return turn

    async def _sweep_exits(self, agent: Agent, prices: Dict[str, float], client, turn: AgentTurnResult):
        for position, trigger in self.ledger.check_exits(agent.id, prices):
            try:
                closed, trade = await self.execution.close(
                    agent,
                    position,
                    client,
                    reason=trigger.value,
                    reference_price=prices.get(position.symbol),
                )
            except PositionAlreadyClosed as e:
                turn.skipped.append(f"exit {position.symbol}: {e}")
                continue
            except STEP_ERRORS as e:
                logger.error(f"EXIT FAILED: {agent.name} {position.symbol} - {e}")
                turn.fail("exits", e)
                continue
            turn.closed.append(closed.id)
            self._record_trade(trade)

    async def _decide_and_execute(
        self,
        agent: Agent,
        prices: Dict[str, float],
        volatility: Optional[Dict[str, float]],
        client,
        turn: AgentTurnResult,
    ):
        request = build_decision_request(agent, self.ledger, prices, self.config, volatility=volatility)
        outcome = await self.decision.decide(request)
        if outcome.failed:
            turn.failures.append(TurnFailure(stage="decide", error_type=outcome.error_type, message=outcome.error or ""))

        decisions = outcome.decisions
        turn.decisions = list(decisions.decisions)
        self._decorate(agent, decisions.decisions, decisions.conclusion)

        for decision in decisions.actionable:
            risk = self.risk_gate.validate(decision, agent, prices)
            if not risk.allowed:
                turn.skipped.append(f"{decision.action} {decision.symbol}: {'; '.join(risk.violations)}")
                continue

            if isinstance(decision, OpenDecision):
                await self._execute_open(agent, risk.request, client, turn)
            elif isinstance(decision, CloseDecision):
                await self._execute_close(agent, decision, prices, client, turn)

    async def _execute_open(self, agent: Agent, request, client, turn: AgentTurnResult):
        try:
            position, trade = await self.execution.open(agent, request, client, protective=agent.is_live)
        except (DuplicateExposure, ExposureExceeded) as e:
            logger.info(f"OPEN SKIPPED: {agent.name} {request.symbol} - {e}")
            turn.skipped.append(f"open {request.symbol}: {e}")
            return
        except STEP_ERRORS as e:
            logger.error(f"OPEN FAILED: {agent.name} {request.symbol} - {type(e).__name__}: {e}")
            turn.fail("execute", e)
            return
        turn.opened.append(position.id)
        self._record_trade(trade)

    async def _execute_close(self, agent: Agent, decision: CloseDecision, prices, client, turn: AgentTurnResult):
        position = self.ledger.find_open(agent.id, decision.symbol)
        if position is None:
            turn.skipped.append(f"close {decision.symbol}: no open position")
            return
        reason = f"decision: {decision.rationale}" if decision.rationale else "decision"
        try:
            closed, trade = await self.execution.close(
                agent, position, client, reason=reason, reference_price=prices.get(decision.symbol)
            )
        except PositionAlreadyClosed as e:
            turn.skipped.append(f"close {decision.symbol}: {e}")
            return
        except STEP_ERRORS as e:
            logger.error(f"CLOSE FAILED: {agent.name} {decision.symbol} - {type(e).__name__}: {e}")
            turn.fail("execute", e)
            return
        turn.closed.append(closed.id)
        self._record_trade(trade)

    async def _sync_live_positions(self, agent: Agent, prices: Dict[str, float], client, turn: AgentTurnResult):
        """Close ledger positions the exchange no longer holds (native SL/TP fired)."""
        try:
            exchange_positions = await client.get_open_positions()
        except STEP_ERRORS as e:
            logger.warning(f"POSITION SYNC FAILED: {agent.name} - {e}")
            turn.fail("sync", e)
            return

        held = {to_coin(p.symbol): p for p in exchange_positions}
        for position in self.ledger.open_positions(agent.id):
            if position.symbol in held:
                continue
            exit_price = prices.get(position.symbol) or position.current_price or position.entry_price
            try:
                closed, trade = await self.execution.record_external_close(
                    agent, position, client, exit_price, "closed on exchange"
                )
            except PositionAlreadyClosed:
                continue
            turn.closed.append(closed.id)
            self._record_trade(trade)

    def _decorate(self, agent: Agent, decisions: List, conclusion: str):
        if conclusion:
            agent.ai_thought = conclusion
        for decision in decisions:
            agent.decision_history.append(DecisionRecord(
                action=decision.action,
                symbol=decision.symbol,
                confidence=decision.confidence,
                rationale=decision.rationale,
            ))
        limit = self.config.decision_history_limit
        if len(agent.decision_history) > limit:
            agent.decision_history = agent.decision_history[-limit:]
