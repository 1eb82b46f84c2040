"""
MarketDataAgent - Fetches the latest ticker prices for every traded coin.

Purpose: One public ticker call per cache window, mapped to {COIN: price}
Fail soft: on error, reuse the last cached prices if any exist
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from .. import errors
from ..config import TradingConfig
from ..exchange.client import AsterClient
from ..exchange.symbols import to_coin
from ..schemas import MarketData, utcnow

logger = logging.getLogger("arena_trader.agents.market_data")

VOLATILITY_ESTIMATE = 0.02


class PriceCache:
    """Last known {COIN: price} map with a freshness window."""

    def __init__(self, ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._prices: Dict[str, float] = {}
        self._fetched_at: Optional[float] = None

    @property
    def is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.ttl_seconds

    def get(self) -> Optional[Dict[str, float]]:
        """Prices if still fresh, else None."""
        return dict(self._prices) if self.is_fresh else None

    def peek(self) -> Dict[str, float]:
        """Whatever is cached, fresh or stale."""
        return dict(self._prices)

    def put(self, prices: Dict[str, float]):
        self._prices = dict(prices)
        self._fetched_at = self._clock()

    def price_of(self, coin: str) -> Optional[float]:
        return self._prices.get(coin.upper())


def parse_ticker_prices(payload: Any) -> Dict[str, float]:
    """
    [{symbol: "BTCUSDT", price: "45000.1"}, ...] -> {"BTC": 45000.1}

    Raises:
        MarketDataUnavailable: payload is not a list
    """
    if not isinstance(payload, list):
        raise errors.MarketDataUnavailable(f"Ticker payload is {type(payload).__name__}, expected list")

    prices = {}
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        coin = to_coin(str(entry.get("symbol", "")))
        if coin is None:
            continue
        try:
            price = float(entry.get("price"))
        except (TypeError, ValueError):
            continue
        if price > 0:
            prices[coin] = price
    return prices


class MarketDataAgent:
    """Fetches ticker prices from the exchange's public endpoint."""

    def __init__(
        self,
        config: TradingConfig,
        cache: Optional[PriceCache] = None,
        client: Optional[AsterClient] = None,
    ):
        self.config = config
        self.cache = cache or PriceCache(ttl_seconds=config.price_cache_seconds)
        self.client = client or AsterClient(
            base_url=config.aster_base_url,
            timeout=config.http_timeout_seconds,
        )

    async def get_prices(self) -> Dict[str, float]:
        """
        Latest {COIN: price} map.

        Raises:
            MarketDataUnavailable: fetch failed and nothing is cached
        """
        cached = self.cache.get()
        if cached is not None:
            return cached

        try:
            prices = await self._fetch()
        except errors.MarketDataUnavailable as e:
            stale = self.cache.peek()
            if stale:
                logger.warning(f"Using stale prices ({len(stale)} coins): {e}")
                return stale
            logger.error(f"DATA_UNAVAILABLE: {e}")
            raise

        self.cache.put(prices)
        logger.debug(f"Fetched {len(prices)} ticker prices")
        return prices

    async def _fetch(self) -> Dict[str, float]:
        try:
            payload = await self.client.get_ticker_prices()
        except (errors.NetworkError, errors.ExchangeRejected, httpx.HTTPError) as e:
            raise errors.MarketDataUnavailable(f"Ticker fetch failed: {e}") from e
        return parse_ticker_prices(payload)

    async def get_market_data(self) -> MarketData:
        """Prices plus a rough volatility estimate for the decision request."""
        fresh = self.cache.is_fresh
        prices = await self.get_prices()
        stale = not fresh and not self.cache.is_fresh
        return MarketData(
            timestamp=utcnow(),
            prices=prices,
            volatility={coin: price * VOLATILITY_ESTIMATE for coin, price in prices.items()},
            stale=stale,
        )

    async def aclose(self):
        await self.client.aclose()
