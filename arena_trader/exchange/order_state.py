"""
Order lifecycle as reported by the exchange.

NEW -> PARTIALLY_FILLED | FILLED | CANCELED | REJECTED | EXPIRED
PARTIALLY_FILLED -> FILLED | CANCELED
"""
from enum import Enum


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self == OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


TERMINAL_STATES = frozenset({
    OrderStatus.FILLED,
    OrderStatus.CANCELED,
    OrderStatus.REJECTED,
    OrderStatus.EXPIRED,
})

ALLOWED_TRANSITIONS = {
    OrderStatus.NEW: frozenset({
        OrderStatus.PARTIALLY_FILLED,
        OrderStatus.FILLED,
        OrderStatus.CANCELED,
        OrderStatus.REJECTED,
        OrderStatus.EXPIRED,
    }),
    OrderStatus.PARTIALLY_FILLED: frozenset({
        OrderStatus.FILLED,
        OrderStatus.CANCELED,
    }),
}


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATES


def has_fill(status: OrderStatus) -> bool:
    """True when at least part of the order executed."""
    return status in (OrderStatus.FILLED, OrderStatus.PARTIALLY_FILLED)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Check whether the exchange may move an order from current to target."""
    if current == target:
        # repeated status reports are harmless
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def advance(current: OrderStatus, target: OrderStatus) -> OrderStatus:
    """Apply a status update, refusing transitions out of terminal states."""
    if current == target:
        return current
    if not can_transition(current, target):
        raise ValueError(f"Illegal order transition {current.value} -> {target.value}")
    return target
