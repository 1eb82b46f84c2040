"""
Aster futures REST client - signed orders, balances and positions.

Orders are never retried here: a timed-out POST may still have reached the
matching engine, so retry policy belongs to the caller.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from ..errors import ExchangeRejected, NetworkError
from ..schemas import Direction, ExchangeBalance, ExchangePosition, OrderResult
from .order_state import OrderSide, OrderType, has_fill
from .signing import DEFAULT_RECV_WINDOW, current_timestamp_ms, generate_nonce, sign_params
from .wallet import WalletCredentials

logger = logging.getLogger("arena_trader.exchange.client")

ASTER_FUTURES_API = "https://fapi.asterdex.com"

ORDER_PATH = "/fapi/v3/order"
BALANCE_PATH = "/fapi/v3/balance"
ACCOUNT_PATH = "/fapi/v3/account"
LEVERAGE_PATH = "/fapi/v3/leverage"
TICKER_PRICE_PATH = "/fapi/v1/ticker/price"


def format_quantity(quantity: float) -> str:
    return f"{quantity:.8f}"


class OrderClient(Protocol):
    """What the execution stage needs from an exchange, live or simulated."""

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Optional[float] = None,
        price: Optional[float] = None,
        stop_price: Optional[float] = None,
        reduce_only: bool = False,
    ) -> OrderResult: ...

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResult: ...

    async def close_position(self, symbol: str, direction: Direction, quantity: float) -> OrderResult: ...

    async def place_protective_orders(
        self,
        symbol: str,
        direction: Direction,
        quantity: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> List[OrderResult]: ...

    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]: ...

    async def get_balance(self, asset: str = "USDT") -> float: ...

    async def get_open_positions(self) -> List[ExchangePosition]: ...


class AsterClient:
    """Async client for the Aster futures API (v3 signed endpoints)."""

    def __init__(
        self,
        credentials: Optional[WalletCredentials] = None,
        base_url: str = ASTER_FUTURES_API,
        timeout: float = 10.0,
        recv_window: int = DEFAULT_RECV_WINDOW,
        http_client: Optional[httpx.AsyncClient] = None,
        nonce_factory: Callable[[], int] = generate_nonce,
        clock_ms: Callable[[], int] = current_timestamp_ms,
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.recv_window = recv_window
        self._nonce_factory = nonce_factory
        self._clock_ms = clock_ms
        self._client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def aclose(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            raise ExchangeRejected(
                code=body.get("code"),
                message=body.get("msg") or response.reason_phrase or "request failed",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExchangeRejected(
                code=None,
                message=f"Malformed response body: {e}",
                status_code=response.status_code,
            ) from e

    async def _signed_request(self, method: str, path: str, params: Dict[str, Any]) -> Any:
        signed = sign_params(
            params,
            self.credentials,
            nonce=self._nonce_factory(),
            timestamp_ms=self._clock_ms(),
            recv_window=self.recv_window,
        )
        payload = signed.to_payload()
        if method in ("GET", "DELETE"):
            response = await self._send(method, path, params=payload)
        else:
            response = await self._send(method, path, data=payload)
        return self._decode(response)

    # ------------------------------------------------------------------
    # public market data
    # ------------------------------------------------------------------

    async def get_ticker_prices(self) -> Any:
        """Raw ticker list - [{symbol, price}, ...]. Unauthenticated."""
        response = await self._send("GET", TICKER_PRICE_PATH)
        return self._decode(response)

    # ------------------------------------------------------------------
    # orders
    # ------------------------------------------------------------------

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Optional[float] = None,
        price: Optional[float] = None,
        stop_price: Optional[float] = None,
        reduce_only: bool = False,
        position_side: str = "BOTH",
        time_in_force: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> OrderResult:
        """
        Submit a signed order.

        Raises:
            ValueError: required fields for the order type are missing
            AuthenticationFailed: no usable signing credentials
            ExchangeRejected: non-2xx answer from the exchange
            NetworkError: transport failure (not retried)
        """
        if order_type in (OrderType.MARKET, OrderType.LIMIT) and not quantity:
            raise ValueError(f"{order_type.value} order requires a quantity")
        if order_type == OrderType.LIMIT and price is None:
            raise ValueError("LIMIT order requires a price")
        if order_type in (OrderType.STOP_MARKET, OrderType.TAKE_PROFIT_MARKET) and stop_price is None:
            raise ValueError(f"{order_type.value} order requires a stopPrice")
        if order_type == OrderType.LIMIT and time_in_force is None:
            time_in_force = "GTC"

        params = {
            "symbol": symbol,
            "side": side.value,
            "type": order_type.value,
            "positionSide": position_side,
            "quantity": format_quantity(quantity) if quantity else None,
            "price": price,
            "stopPrice": stop_price,
            "timeInForce": time_in_force,
            "reduceOnly": "true" if reduce_only else None,
            "newClientOrderId": client_order_id,
            "newOrderRespType": "RESULT",
        }
        data = await self._signed_request("POST", ORDER_PATH, params)
        result = OrderResult.from_exchange(data)
        logger.info(
            f"ORDER PLACED: {symbol} {side.value} {order_type.value} qty={params['quantity']} "
            f"-> {result.order_id} {result.status.value}"
        )
        return result

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResult:
        data = await self._signed_request("DELETE", ORDER_PATH, {"symbol": symbol, "orderId": order_id})
        logger.info(f"ORDER CANCELED: {symbol} {order_id}")
        return OrderResult.from_exchange(data)

    async def close_position(self, symbol: str, direction: Direction, quantity: float) -> OrderResult:
        """Reduce-only market order on the opposite side."""
        return await self.place_order(
            symbol=symbol,
            side=direction.exit_side,
            order_type=OrderType.MARKET,
            quantity=quantity,
            reduce_only=True,
        )

    async def place_protective_orders(
        self,
        symbol: str,
        direction: Direction,
        quantity: float,
        stop_loss: Optional[float],
        take_profit: Optional[float],
    ) -> List[OrderResult]:
        """Exchange-native stop-loss / take-profit for a freshly filled entry."""
        results = []
        if stop_loss:
            results.append(await self.place_order(
                symbol=symbol,
                side=direction.exit_side,
                order_type=OrderType.STOP_MARKET,
                quantity=quantity,
                stop_price=stop_loss,
                reduce_only=True,
            ))
        if take_profit:
            results.append(await self.place_order(
                symbol=symbol,
                side=direction.exit_side,
                order_type=OrderType.TAKE_PROFIT_MARKET,
                quantity=quantity,
                stop_price=take_profit,
                reduce_only=True,
            ))
        return results

    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        data = await self._signed_request("POST", LEVERAGE_PATH, {"symbol": symbol, "leverage": leverage})
        logger.info(f"LEVERAGE SET: {symbol} {leverage}x")
        return data

    # ------------------------------------------------------------------
    # account
    # ------------------------------------------------------------------

    async def get_balances(self) -> List[ExchangeBalance]:
        data = await self._signed_request("GET", BALANCE_PATH, {})
        if not isinstance(data, list):
            raise ExchangeRejected(code=None, message="Balance response is not a list")
        return [ExchangeBalance.from_exchange(item) for item in data if isinstance(item, dict)]

    async def get_balance(self, asset: str = "USDT") -> float:
        """Wallet balance of the quote asset. Raises instead of returning 0 on failure."""
        for entry in await self.get_balances():
            if entry.asset == asset:
                return entry.balance
        raise ExchangeRejected(code=None, message=f"{asset} balance not found in account")

    async def get_account(self) -> Dict[str, Any]:
        data = await self._signed_request("GET", ACCOUNT_PATH, {})
        if not isinstance(data, dict):
            raise ExchangeRejected(code=None, message="Account response is not an object")
        return data

    async def get_open_positions(self) -> List[ExchangePosition]:
        """Positions with non-zero size. An empty list means truly flat."""
        account = await self.get_account()
        positions = account.get("positions")
        if not isinstance(positions, list):
            raise ExchangeRejected(code=None, message="Account response has no positions list")
        parsed = [ExchangePosition.from_exchange(p) for p in positions if isinstance(p, dict)]
        return [p for p in parsed if p.position_amt != 0]


def fill_price(result: OrderResult, fallback: float) -> float:
    """Average fill price, or the reference price when the exchange omits it."""
    if has_fill(result.status) and result.avg_price > 0:
        return result.avg_price
    return fallback
