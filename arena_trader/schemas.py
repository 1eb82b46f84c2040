"""
Pydantic schemas for the trading arena - agents, positions, trades, decisions.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import TradingMode
from .exchange.order_state import OrderSide, OrderStatus, OrderType

LEVERAGE_OPTIONS = (5, 8, 10, 12, 15, 20)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Direction(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def entry_side(self) -> OrderSide:
        return OrderSide.BUY if self == Direction.LONG else OrderSide.SELL

    @property
    def exit_side(self) -> OrderSide:
        return self.entry_side.opposite


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class TradeKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


class ExitTrigger(str, Enum):
    NONE = "none"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


class AgentStatus(str, Enum):
    """Display-only health signal derived from balance."""
    ACTIVE = "active"
    SLOW = "slow"
    ERROR = "error"


def _validate_leverage(v: int) -> int:
    if v not in LEVERAGE_OPTIONS:
        raise ValueError(f"leverage must be one of {LEVERAGE_OPTIONS}, got {v}")
    return v


# ---------------------------------------------------------------------------
# Persistent entities
# ---------------------------------------------------------------------------

class LastTrade(BaseModel):
    symbol: str
    direction: Direction
    notional_usd: float
    price: float
    pnl_pct: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class DecisionRecord(BaseModel):
    """One entry of an agent's bounded decision history."""
    timestamp: datetime = Field(default_factory=utcnow)
    action: str
    symbol: Optional[str] = None
    confidence: float = 0.0
    rationale: str = ""


class Agent(BaseModel):
    """Autonomous trader identity plus its mutable trading state."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    strategy: str = ""
    prompt: str = Field(default="", description="Free-text decision context sent as system prompt")
    trading_mode: TradingMode = TradingMode.PAPER

    initial_balance: float = Field(default=1000.0, gt=0)
    balance: float = 1000.0
    pnl: float = Field(default=0.0, description="Cumulative PnL percentage")
    pnl_absolute: float = Field(default=0.0, description="Cumulative PnL in quote currency")
    win_rate: float = 50.0
    total_trades: int = 0
    volume_24h: float = 0.0

    aster_user_address: Optional[str] = Field(default=None, description="Live mode account wallet")
    aster_signer_address: Optional[str] = Field(default=None, description="Live mode API signer wallet")

    last_trade: Optional[LastTrade] = None
    ai_thought: Optional[str] = None
    decision_history: List[DecisionRecord] = Field(default_factory=list)
    status: AgentStatus = AgentStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_live(self) -> bool:
        return self.trading_mode == TradingMode.LIVE


class Position(BaseModel):
    """One leveraged exposure of one agent on one instrument."""
    id: str = Field(default_factory=new_id)
    agent_id: str
    agent_name: str = ""
    symbol: str
    direction: Direction
    entry_price: float = Field(gt=0)
    exit_price: Optional[float] = None
    current_price: Optional[float] = None
    leverage: int
    notional_usd: float = Field(gt=0, description="Full leveraged size in quote currency")
    quantity: Optional[float] = Field(default=None, description="Base-asset quantity filled on the exchange")
    stop_loss: float = Field(gt=0)
    take_profit: float = Field(gt=0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    expected_duration: Optional[str] = None
    opened_at: datetime = Field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    status: PositionStatus = PositionStatus.OPEN
    pnl_pct: float = 0.0
    pnl_usd: float = 0.0
    rationale: str = ""
    close_reason: Optional[str] = None
    exchange_order_id: Optional[str] = None
    protective_order_ids: List[str] = Field(default_factory=list, description="Resting native SL/TP order ids")

    check_leverage = field_validator("leverage")(_validate_leverage)

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN


class Trade(BaseModel):
    """Append-only ledger entry for the entry or exit of a position."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    agent_id: str
    agent_name: str = ""
    position_id: str
    symbol: str
    direction: Direction
    kind: TradeKind
    price: float
    notional_usd: float
    leverage: int
    pnl_pct: float = 0.0
    pnl_usd: float = 0.0
    confidence: float = 0.5
    rationale: str = ""
    order_type: str = "market"
    opened_at: datetime = Field(description="Open timestamp of the position, correlates entry and exit")
    timestamp: datetime = Field(default_factory=utcnow)


class BalanceSnapshot(BaseModel):
    """Point-in-time balance record for historical charts."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    agent_name: str = ""
    balance: float
    pnl: float = 0.0
    pnl_absolute: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Decision contract
# ---------------------------------------------------------------------------

class _DecisionBase(BaseModel):
    symbol: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rationale: str = ""

    @field_validator("symbol")
    @classmethod
    def uppercase_symbol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper().strip()
        if not v:
            raise ValueError("symbol must not be blank")
        return v


class OpenDecision(_DecisionBase):
    """Open a new leveraged position."""
    action: Literal["open"] = "open"
    symbol: str = Field(..., min_length=1, max_length=12)
    direction: Direction
    size_usd: Optional[float] = Field(default=None, gt=0, description="Absolute notional")
    size_pct: Optional[float] = Field(default=None, gt=0, le=100, description="Margin as % of balance")
    leverage: int = LEVERAGE_OPTIONS[0]
    stop_loss: Optional[float] = Field(default=None, gt=0)
    take_profit: Optional[float] = Field(default=None, gt=0)
    expected_duration: Optional[str] = None

    check_leverage = field_validator("leverage")(_validate_leverage)

    @model_validator(mode="after")
    def require_size(self) -> "OpenDecision":
        if self.size_usd is None and self.size_pct is None:
            raise ValueError("open decision needs size_usd or size_pct")
        return self


class CloseDecision(_DecisionBase):
    action: Literal["close"] = "close"
    symbol: str = Field(..., min_length=1, max_length=12)


class HoldDecision(_DecisionBase):
    action: Literal["hold"] = "hold"


class WaitDecision(_DecisionBase):
    action: Literal["wait"] = "wait"


class NoneDecision(_DecisionBase):
    """Safe default - nothing happens this turn."""
    action: Literal["none"] = "none"


TradeDecision = Annotated[
    Union[OpenDecision, CloseDecision, HoldDecision, WaitDecision, NoneDecision],
    Field(discriminator="action"),
]


class DecisionSet(BaseModel):
    decisions: List[TradeDecision] = Field(default_factory=list)
    conclusion: str = ""

    @classmethod
    def safe_default(cls, reason: str = "") -> "DecisionSet":
        return cls(decisions=[NoneDecision(confidence=0.0, rationale=reason)], conclusion=reason)

    @property
    def actionable(self) -> list:
        return [d for d in self.decisions if d.action in ("open", "close")]


class PositionView(BaseModel):
    """Open position as presented to the decision collaborator."""
    symbol: str
    direction: Direction
    entry_price: float
    current_price: Optional[float] = None
    leverage: int
    notional_usd: float
    stop_loss: float
    take_profit: float
    unrealized_pnl_pct: float = 0.0
    unrealized_pnl_usd: float = 0.0
    distance_to_stop_pct: Optional[float] = None
    distance_to_target_pct: Optional[float] = None
    opened_at: datetime


class DecisionRequest(BaseModel):
    """Fixed request shape handed to the decision collaborator."""
    agent_name: str
    strategy: str = ""
    prompt: str = ""
    balance: float
    exposure_pct: float = 0.0
    exposure_ceiling_pct: float = 70.0
    open_positions: List[PositionView] = Field(default_factory=list)
    prices: Dict[str, float] = Field(default_factory=dict)
    volatility: Dict[str, float] = Field(default_factory=dict, description="Rough absolute price volatility per coin")
    available_symbols: List[str] = Field(default_factory=list)
    leverage_options: List[int] = Field(default_factory=lambda: list(LEVERAGE_OPTIONS))
    timestamp: datetime = Field(default_factory=utcnow)


class MarketData(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    prices: Dict[str, float] = Field(default_factory=dict)
    volatility: Dict[str, float] = Field(default_factory=dict)
    stale: bool = False


class PositionRequest(BaseModel):
    """Fully sized open request produced by the risk gate."""
    symbol: str
    direction: Direction
    entry_price: float = Field(gt=0)
    notional_usd: float = Field(gt=0)
    leverage: int
    stop_loss: float = Field(gt=0)
    take_profit: float = Field(gt=0)
    confidence: float = 0.5
    rationale: str = ""
    expected_duration: Optional[str] = None
    quantity: Optional[float] = None
    exchange_order_id: Optional[str] = None

    check_leverage = field_validator("leverage")(_validate_leverage)


class RiskResult(BaseModel):
    """Output of the risk gate."""
    allowed: bool
    decision: TradeDecision
    request: Optional[PositionRequest] = None
    notes: List[str] = Field(default_factory=list)
    violations: List[str] = Field(default_factory=list)
    error_type: Optional[str] = None


# ---------------------------------------------------------------------------
# Exchange payloads
# ---------------------------------------------------------------------------

def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class OrderResult(BaseModel):
    """Exchange answer to an order submission."""
    order_id: str
    client_order_id: Optional[str] = None
    symbol: str
    side: OrderSide
    type: OrderType
    status: OrderStatus
    orig_qty: float = 0.0
    executed_qty: float = 0.0
    avg_price: float = 0.0
    price: float = 0.0
    stop_price: Optional[float] = None
    reduce_only: bool = False
    update_time: Optional[int] = None

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "OrderResult":
        return cls(
            order_id=str(data.get("orderId", "")),
            client_order_id=data.get("clientOrderId"),
            symbol=data.get("symbol", ""),
            side=OrderSide(data.get("side", "BUY")),
            type=OrderType(data.get("type") or data.get("origType") or "MARKET"),
            status=OrderStatus(data.get("status", "NEW")),
            orig_qty=_to_float(data.get("origQty")),
            executed_qty=_to_float(data.get("executedQty")),
            avg_price=_to_float(data.get("avgPrice")),
            price=_to_float(data.get("price")),
            stop_price=_to_float(data["stopPrice"]) if data.get("stopPrice") else None,
            reduce_only=str(data.get("reduceOnly", "false")).lower() == "true",
            update_time=data.get("updateTime"),
        )


class ExchangeBalance(BaseModel):
    asset: str
    balance: float
    available_balance: float = 0.0
    cross_unrealized_pnl: float = 0.0

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "ExchangeBalance":
        return cls(
            asset=data.get("asset", ""),
            balance=_to_float(data.get("balance")),
            available_balance=_to_float(data.get("availableBalance")),
            cross_unrealized_pnl=_to_float(data.get("crossUnPnl")),
        )


class ExchangePosition(BaseModel):
    symbol: str
    position_amt: float
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealized_profit: float = 0.0
    leverage: Optional[int] = None
    position_side: str = "BOTH"

    @classmethod
    def from_exchange(cls, data: Dict[str, Any]) -> "ExchangePosition":
        leverage = data.get("leverage")
        return cls(
            symbol=data.get("symbol", ""),
            position_amt=_to_float(data.get("positionAmt")),
            entry_price=_to_float(data.get("entryPrice")),
            mark_price=_to_float(data.get("markPrice")),
            unrealized_profit=_to_float(data.get("unrealizedProfit")),
            leverage=int(leverage) if leverage not in (None, "") else None,
            position_side=data.get("positionSide", "BOTH"),
        )


# ---------------------------------------------------------------------------
# Cycle results
# ---------------------------------------------------------------------------

class TurnFailure(BaseModel):
    stage: str = Field(description="fetch, exits, decide, execute, reconcile, sync")
    error_type: str
    message: str


class AgentTurnResult(BaseModel):
    """Outcome of one agent's pipeline inside a cycle."""
    agent_id: str
    agent_name: str
    trading_mode: TradingMode
    decisions: List[TradeDecision] = Field(default_factory=list)
    opened: List[str] = Field(default_factory=list)
    closed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failures: List[TurnFailure] = Field(default_factory=list)
    balance_before: float = 0.0
    balance_after: float = 0.0
    soft_failure: bool = False
    duration_ms: float = 0.0

    def fail(self, stage: str, error: BaseException) -> None:
        self.failures.append(TurnFailure(stage=stage, error_type=type(error).__name__, message=str(error)))


class CycleFailure(BaseModel):
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    stage: str
    error_type: str
    message: str


class CycleSummary(BaseModel):
    """Complete result from one scheduler tick."""
    cycle_id: str = Field(default_factory=new_id)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    duration_ms: float = 0.0
    skipped: bool = False
    prices_available: bool = True
    agents_processed: int = 0
    trades_opened: int = 0
    trades_closed: int = 0
    failures: List[CycleFailure] = Field(default_factory=list)
    turns: List[AgentTurnResult] = Field(default_factory=list)

    @classmethod
    def skipped_cycle(cls) -> "CycleSummary":
        now = utcnow()
        return cls(started_at=now, finished_at=now, skipped=True)

    def add_turn(self, turn: AgentTurnResult) -> None:
        self.turns.append(turn)
        self.agents_processed += 1
        self.trades_opened += len(turn.opened)
        self.trades_closed += len(turn.closed)
        for failure in turn.failures:
            self.failures.append(CycleFailure(
                agent_id=turn.agent_id,
                agent_name=turn.agent_name,
                stage=failure.stage,
                error_type=failure.error_type,
                message=failure.message,
            ))
