"""
Error taxonomy for the trading cycle.

Invariant violations (DuplicateExposure, ExposureExceeded, PositionAlreadyClosed)
reject a single action. Transport and auth failures cost an agent its turn.
None of them are allowed to stop the scheduler.
"""
from typing import Optional


class TradingError(Exception):
    """Base class for every recoverable trading-cycle failure."""


class MarketDataUnavailable(TradingError):
    """Prices could not be fetched or the ticker payload was malformed."""


class DuplicateExposure(TradingError):
    """An open position already exists for this (agent, symbol) pair."""

    def __init__(self, agent_id: str, symbol: str):
        self.agent_id = agent_id
        self.symbol = symbol
        super().__init__(f"No pyramiding: agent {agent_id} already holds {symbol}")


class ExposureExceeded(TradingError):
    """Opening the position would push exposure past the configured ceiling."""

    def __init__(self, projected: float, ceiling: float):
        self.projected = projected
        self.ceiling = ceiling
        super().__init__(
            f"Projected exposure {projected:.1%} exceeds ceiling {ceiling:.1%}"
        )


class PositionAlreadyClosed(TradingError):
    """close_position called on a position that is no longer open."""

    def __init__(self, position_id: str):
        self.position_id = position_id
        super().__init__(f"Position {position_id} is already closed")


class AuthenticationFailed(TradingError):
    """Signing inputs (wallet addresses or private key) are missing or invalid."""


class LiveTradingDisabled(TradingError):
    """A live agent was scheduled while the LIVE_TRADING_ENABLED latch is off."""


class ExchangeRejected(TradingError):
    """The exchange answered with a non-2xx status or an unusable body."""

    def __init__(self, code: Optional[int], message: str, status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"Exchange rejected request (status={status_code}, code={code}): {message}")


class NetworkError(TradingError):
    """Transport failure talking to the exchange. Never retried automatically."""


class DecisionInvalid(TradingError):
    """The decision collaborator replied with something outside the schema."""
