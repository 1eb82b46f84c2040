"""
PaperOrderClient - simulated fills for paper agents.

MARKET orders fill immediately and in full at the latest cached ticker price.
Stop and take-profit orders are accepted but stay NEW; paper positions are
closed by the ledger's client-side exit sweep instead.
"""
import itertools
import logging
from typing import Any, Dict, List, Optional

from ..errors import ExchangeRejected
from ..schemas import Direction, ExchangePosition, OrderResult
from .order_state import OrderSide, OrderStatus, OrderType
from .symbols import to_coin

logger = logging.getLogger("arena_trader.exchange.paper")


class PaperOrderClient:
    """OrderClient implementation that never leaves the process."""

    def __init__(self, price_cache):
        self.price_cache = price_cache
        self._ids = itertools.count(1)

    def _next_id(self) -> str:
        return f"paper-{next(self._ids)}"

    def _price_for(self, symbol: str) -> float:
        coin = to_coin(symbol) or symbol
        price = self.price_cache.price_of(coin)
        if price is None:
            raise ExchangeRejected(code=None, message=f"No paper price for {symbol}")
        return price

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Optional[float] = None,
        price: Optional[float] = None,
        stop_price: Optional[float] = None,
        reduce_only: bool = False,
        **kwargs,
    ) -> OrderResult:
        if order_type == OrderType.MARKET:
            if not quantity:
                raise ValueError("MARKET order requires a quantity")
            fill = self._price_for(symbol)
            result = OrderResult(
                order_id=self._next_id(),
                symbol=symbol,
                side=side,
                type=order_type,
                status=OrderStatus.FILLED,
                orig_qty=quantity,
                executed_qty=quantity,
                avg_price=fill,
                price=fill,
                reduce_only=reduce_only,
            )
            logger.info(f"PAPER FILL: {symbol} {side.value} qty={quantity:.8f} @ {fill}")
            return result

        return OrderResult(
            order_id=self._next_id(),
            symbol=symbol,
            side=side,
            type=order_type,
            status=OrderStatus.NEW,
            orig_qty=quantity or 0.0,
            price=price or 0.0,
            stop_price=stop_price,
            reduce_only=reduce_only,
        )

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResult:
        raise ExchangeRejected(code=None, message=f"Paper order {order_id} cannot be canceled")

    async def close_position(self, symbol: str, direction: Direction, quantity: float) -> OrderResult:
        return await self.place_order(
            symbol=symbol,
            side=direction.exit_side,
            order_type=OrderType.MARKET,
            quantity=quantity,
            reduce_only=True,
        )

    async def place_protective_orders(self, *args, **kwargs) -> List[OrderResult]:
        return []

    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        return {"symbol": symbol, "leverage": leverage}

    async def get_balance(self, asset: str = "USDT") -> float:
        raise ExchangeRejected(code=None, message="Paper client has no exchange balance")

    async def get_open_positions(self) -> List[ExchangePosition]:
        raise ExchangeRejected(code=None, message="Paper client has no exchange positions")

    async def aclose(self):
        pass
