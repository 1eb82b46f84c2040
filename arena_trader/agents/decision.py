"""
DecisionAgent - Asks the decision collaborator what each agent should do.

Purpose: Package agent state into a fixed request, call the collaborator with a
timeout, and validate the reply into the closed decision union.
Fail safe: timeout, exception or malformed reply -> NoneDecision(confidence=0)
"""
import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..config import TradingConfig
from ..errors import DecisionInvalid
from ..schemas import (
    LEVERAGE_OPTIONS,
    Agent,
    DecisionRequest,
    DecisionSet,
    NoneDecision,
    Position,
    PositionView,
    TradeDecision,
)
from .ledger import PositionLedger

logger = logging.getLogger("arena_trader.agents.decision")

DEFAULT_SYSTEM_PROMPT = """You are a crypto futures trader reviewing the market every 30 seconds.

TRADING RULES:
1. No pyramiding - at most one open position per symbol.
2. Several symbols may be open at once while total exposure stays within the ceiling given in the request.
3. Open only when the setup is strong (confidence >= 0.6).
4. Close when the trade thesis is invalidated or confidence drops to 0.5 or below.
5. Hold a position that is still valid; wait when there is no position and no setup.
6. Leverage must be one of the leverage_options in the request.

RESPOND WITH VALID JSON ONLY:
{
  "decisions": {
    "BTC": {
      "trade_signal_args": {
        "coin": "BTC",
        "signal": "wait|hold|long|short|close",
        "size_usd": 100.0,
        "leverage": 10,
        "stop_loss": 49000.0,
        "profit_target": 52000.0,
        "confidence": 0.7,
        "expected_duration": "30min",
        "justification": "what you see on the chart"
      }
    }
  },
  "conclusion": "one paragraph on current setups and what to watch next"
}"""

_decision_adapter = TypeAdapter(TradeDecision)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_SIGNAL_ACTIONS = {
    "long": "open",
    "short": "open",
    "buy": "open",
    "sell": "open",
    "close": "close",
    "hold": "hold",
    "wait": "wait",
    "none": "none",
    "open": "open",
}


class DecisionProvider(Protocol):
    """External decision collaborator. Returns the raw reply (dict or JSON text)."""

    async def decide(self, request: DecisionRequest) -> Any: ...


class OpenAIDecisionProvider:
    """Chat-completion backed decision collaborator."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", temperature: float = 0.7):
        self.model = model
        self.temperature = temperature
        self.client = AsyncOpenAI(api_key=api_key)

    async def decide(self, request: DecisionRequest) -> Any:
        system_prompt = request.prompt or DEFAULT_SYSTEM_PROMPT
        user_message = (
            "Analyze this trading state and return decisions for every available symbol.\n\n"
            f"{request.model_dump_json(indent=2)}\n\n"
            "Return JSON only, no markdown."
        )
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            temperature=self.temperature,
            max_tokens=2000,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content
        if not content:
            raise DecisionInvalid("Empty response from model")
        return content


def _position_view(position: Position, price: Optional[float]) -> PositionView:
    pct, usd = PositionLedger.unrealized_pnl(position, price)
    reference = price or position.current_price or position.entry_price
    return PositionView(
        symbol=position.symbol,
        direction=position.direction,
        entry_price=position.entry_price,
        current_price=price,
        leverage=position.leverage,
        notional_usd=position.notional_usd,
        stop_loss=position.stop_loss,
        take_profit=position.take_profit,
        unrealized_pnl_pct=round(pct, 4),
        unrealized_pnl_usd=round(usd, 4),
        distance_to_stop_pct=round(abs(reference - position.stop_loss) / reference * 100, 4),
        distance_to_target_pct=round(abs(position.take_profit - reference) / reference * 100, 4),
        opened_at=position.opened_at,
    )


def build_decision_request(
    agent: Agent,
    ledger: PositionLedger,
    prices: Dict[str, float],
    config: TradingConfig,
    volatility: Optional[Dict[str, float]] = None,
) -> DecisionRequest:
    positions = ledger.open_positions(agent.id)
    exposure_pct = 0.0
    if agent.balance > 0:
        exposure_pct = ledger.exposure(agent.id) / agent.balance * 100
    return DecisionRequest(
        agent_name=agent.name,
        strategy=agent.strategy,
        prompt=agent.prompt,
        balance=round(agent.balance, 2),
        exposure_pct=round(exposure_pct, 2),
        exposure_ceiling_pct=config.exposure_ceiling * 100,
        open_positions=[_position_view(p, prices.get(p.symbol)) for p in positions],
        prices=prices,
        volatility={coin: v for coin, v in (volatility or {}).items() if coin in prices},
        available_symbols=sorted(prices),
        leverage_options=list(LEVERAGE_OPTIONS),
    )


def _load_reply(raw: Any) -> Any:
    if isinstance(raw, (bytes, str)):
        text = raw.decode() if isinstance(raw, bytes) else raw
        match = _JSON_OBJECT.search(text)
        try:
            return json.loads(match.group(0) if match else text)
        except json.JSONDecodeError as e:
            raise DecisionInvalid(f"Reply is not JSON: {e}") from e
    return raw


def _from_signal_args(coin: str, entry: Any) -> Any:
    """Map one {COIN: {trade_signal_args: {...}}} entry onto the decision union shape."""
    if not isinstance(entry, dict):
        return entry
    args = entry.get("trade_signal_args", entry)
    if not isinstance(args, dict):
        return args
    signal = str(args.get("signal", "none")).lower()
    normalized = {
        "action": _SIGNAL_ACTIONS.get(signal, signal),
        "symbol": args.get("coin") or coin,
        "confidence": args.get("confidence", 0.0),
        "rationale": args.get("justification") or args.get("rationale") or "",
    }
    if normalized["action"] == "open":
        normalized.update({
            "direction": "short" if signal in ("short", "sell") else args.get("direction", "long"),
            "size_usd": args.get("size_usd") or args.get("quantity"),
            "size_pct": args.get("size_pct"),
            "leverage": args.get("leverage", LEVERAGE_OPTIONS[0]),
            "stop_loss": args.get("stop_loss"),
            "take_profit": args.get("profit_target") or args.get("take_profit"),
            "expected_duration": args.get("expected_duration"),
        })
    return normalized


def _normalize_action(entry: Any) -> Any:
    if not isinstance(entry, dict):
        return entry
    action = str(entry.get("action", "")).lower()
    if action in ("long", "short"):
        return {**entry, "action": "open", "direction": action}
    return entry


def parse_decisions(raw: Any) -> DecisionSet:
    """
    Validate a collaborator reply.

    Accepted shapes:
        {"action": ...}                                     single decision
        {"decisions": [{"action": ...}, ...]}               list
        {"decisions": {COIN: {"trade_signal_args": ...}}}   per-symbol signals

    Entries that fail validation become NoneDecision. A reply with no usable
    structure, or where every entry is invalid, raises DecisionInvalid.
    """
    data = _load_reply(raw)
    if not isinstance(data, dict):
        raise DecisionInvalid(f"Reply is {type(data).__name__}, expected object")

    conclusion = str(data.get("conclusion") or "")
    decisions = data.get("decisions")

    if isinstance(decisions, dict):
        entries = [_from_signal_args(coin, entry) for coin, entry in decisions.items()]
    elif isinstance(decisions, list):
        entries = [_normalize_action(entry) for entry in decisions]
    elif "action" in data:
        entries = [_normalize_action(data)]
        conclusion = conclusion or str(data.get("rationale") or "")
    else:
        raise DecisionInvalid("Reply has neither 'action' nor 'decisions'")

    if not entries:
        return DecisionSet(decisions=[], conclusion=conclusion)

    parsed: List = []
    invalid = 0
    for entry in entries:
        try:
            parsed.append(_decision_adapter.validate_python(entry))
        except ValidationError as e:
            invalid += 1
            logger.warning(f"Invalid decision entry dropped: {e.error_count()} errors in {entry!r:.200}")
            parsed.append(NoneDecision(confidence=0.0, rationale="invalid decision entry"))

    if invalid == len(entries):
        raise DecisionInvalid(f"All {invalid} decision entries failed validation")

    return DecisionSet(decisions=parsed, conclusion=conclusion)


class DecisionOutcome(BaseModel):
    decisions: DecisionSet
    error_type: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.error_type is not None


class DecisionAgent:
    """Wraps the collaborator with a timeout and schema validation."""

    def __init__(self, config: TradingConfig, provider: Optional[DecisionProvider] = None):
        self.config = config
        self.provider = provider or OpenAIDecisionProvider(
            api_key=config.openai_api_key,
            model=config.openai_model,
        )
        self.timeout = config.decision_timeout_seconds

    async def decide(self, request: DecisionRequest) -> DecisionOutcome:
        start = time.time()
        try:
            raw = await asyncio.wait_for(self.provider.decide(request), timeout=self.timeout)
            decisions = parse_decisions(raw)
        except asyncio.TimeoutError:
            logger.error(f"DECISION TIMEOUT: {request.agent_name} after {self.timeout}s")
            return self._safe(start, "DecisionTimeout", f"No reply within {self.timeout}s")
        except DecisionInvalid as e:
            logger.error(f"DECISION INVALID: {request.agent_name} - {e}")
            return self._safe(start, "DecisionInvalid", str(e))
        except Exception as e:
            logger.error(f"DECISION FAILED: {request.agent_name} - {type(e).__name__}: {e}")
            return self._safe(start, type(e).__name__, str(e))

        duration = (time.time() - start) * 1000
        logger.info(
            f"Decision for {request.agent_name}: "
            f"{[f'{d.action}:{d.symbol}' for d in decisions.decisions]} ({duration:.0f}ms)"
        )
        return DecisionOutcome(decisions=decisions, duration_ms=duration)

    @staticmethod
    def _safe(start: float, error_type: str, message: str) -> DecisionOutcome:
        return DecisionOutcome(
            decisions=DecisionSet.safe_default(message),
            error_type=error_type,
            error=message,
            duration_ms=(time.time() - start) * 1000,
        )
