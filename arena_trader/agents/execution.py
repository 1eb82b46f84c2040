"""
ExecutionAgent - Turns gated decisions into orders and ledger entries.

Purpose: Place the order first, record the position only after a fill.
An exchange rejection or transport failure leaves the ledger untouched.
"""
import logging
from typing import List, Optional, Tuple

import httpx

from ..errors import TradingError
from ..schemas import Agent, LastTrade, OrderResult, Position, PositionRequest, Trade
from ..exchange.client import OrderClient, fill_price
from ..exchange.order_state import OrderType, has_fill
from ..exchange.symbols import to_exchange_symbol
from .ledger import PositionLedger

logger = logging.getLogger("arena_trader.agents.execution")


class ExecutionFailed(TradingError):
    """The order was accepted but did not fill; nothing was recorded."""

    def __init__(self, result: OrderResult):
        self.result = result
        super().__init__(f"Order {result.order_id} ended {result.status.value} without a fill")


class ExecutionAgent:
    """Executes open/close requests through an OrderClient."""

    def __init__(self, ledger: PositionLedger, quote_asset: str = "USDT"):
        self.ledger = ledger
        self.quote_asset = quote_asset

    def _symbol(self, coin: str) -> str:
        return to_exchange_symbol(coin, self.quote_asset)

    async def open(
        self,
        agent: Agent,
        request: PositionRequest,
        client: OrderClient,
        protective: bool = False,
    ) -> Tuple[Position, Trade]:
        """
        Submit the entry order and record the filled position.

        Raises:
            ExchangeRejected / NetworkError / AuthenticationFailed: order not placed
            ExecutionFailed: order placed but not filled
            DuplicateExposure / ExposureExceeded: ledger refused the fill
        """
        symbol = self._symbol(request.symbol)
        quantity = request.notional_usd / request.entry_price

        if protective:
            await client.set_leverage(symbol, request.leverage)

        result = await client.place_order(
            symbol=symbol,
            side=request.direction.entry_side,
            order_type=OrderType.MARKET,
            quantity=quantity,
        )
        if not has_fill(result.status):
            raise ExecutionFailed(result)

        filled_price = fill_price(result, request.entry_price)
        filled_qty = result.executed_qty or quantity
        update = {
            "entry_price": filled_price,
            "quantity": filled_qty,
            "exchange_order_id": result.order_id,
        }
        if filled_qty < quantity:
            # partial fill: book only what the exchange executed
            update["notional_usd"] = filled_qty * filled_price
        position, trade = self.ledger.open_position(agent, request.model_copy(update=update))

        if protective:
            orders = await self._place_protective(client, symbol, position)
            if orders:
                position.protective_order_ids = [o.order_id for o in orders]
                self.ledger.store.update_position(position)

        agent.last_trade = LastTrade(
            symbol=position.symbol,
            direction=position.direction,
            notional_usd=position.notional_usd,
            price=position.entry_price,
        )
        agent.volume_24h += position.notional_usd
        logger.info(f"ORDER FILLED: {agent.name} {symbol} {result.side.value} {filled_qty:.8f} @ {filled_price}")
        return position, trade

    async def _place_protective(self, client: OrderClient, symbol: str, position: Position) -> List[OrderResult]:
        """Exchange-native SL/TP. A failure here is logged; the entry already filled."""
        try:
            return await client.place_protective_orders(
                symbol=symbol,
                direction=position.direction,
                quantity=position.quantity,
                stop_loss=position.stop_loss,
                take_profit=position.take_profit,
            )
        except (TradingError, httpx.HTTPError, ValueError) as e:
            logger.error(f"PROTECTIVE ORDERS FAILED: {symbol} position {position.id} is unprotected - {e}")
            return []

    async def _cancel_protective(self, client: OrderClient, position: Position):
        """Cancel resting SL/TP orders left behind by a close. Failures are logged only."""
        symbol = self._symbol(position.symbol)
        for order_id in position.protective_order_ids:
            try:
                await client.cancel_order(symbol, order_id)
            except (TradingError, httpx.HTTPError) as e:
                logger.warning(f"PROTECTIVE CANCEL FAILED: {symbol} order {order_id} for position {position.id} - {e}")

    async def close(
        self,
        agent: Agent,
        position: Position,
        client: OrderClient,
        reason: str,
        reference_price: Optional[float] = None,
    ) -> Tuple[Position, Trade]:
        """
        Submit a reduce-only close and record the exit.

        Raises:
            ExchangeRejected / NetworkError / AuthenticationFailed: order not placed
            ExecutionFailed: order placed but not filled
            PositionAlreadyClosed: the position closed concurrently
        """
        symbol = self._symbol(position.symbol)
        quantity = position.quantity or position.notional_usd / position.entry_price
        result = await client.close_position(symbol, position.direction, quantity)
        if not has_fill(result.status):
            raise ExecutionFailed(result)

        exit_price = fill_price(result, reference_price or position.current_price or position.entry_price)
        closed, trade = self.ledger.close_position(position, exit_price, reason)
        await self._cancel_protective(client, closed)

        agent.last_trade = LastTrade(
            symbol=closed.symbol,
            direction=closed.direction,
            notional_usd=closed.notional_usd,
            price=exit_price,
            pnl_pct=closed.pnl_pct,
        )
        agent.volume_24h += closed.notional_usd
        return closed, trade

    async def record_external_close(
        self,
        agent: Agent,
        position: Position,
        client: OrderClient,
        exit_price: float,
        reason: str,
    ) -> Tuple[Position, Trade]:
        """
        Record a close that already happened on the exchange (native SL/TP).

        Whichever of the SL/TP pair did not fire is still resting and gets canceled.
        """
        closed, trade = self.ledger.close_position(position, exit_price, reason)
        await self._cancel_protective(client, closed)
        agent.last_trade = LastTrade(
            symbol=closed.symbol,
            direction=closed.direction,
            notional_usd=closed.notional_usd,
            price=exit_price,
            pnl_pct=closed.pnl_pct,
        )
        return closed, trade
