"""
Mapping between coin names used by agents (BTC) and exchange symbols (BTCUSDT).
"""
import re
from typing import Optional

_SYMBOL_RE = re.compile(r"^([A-Z]+)USDT$")

MAX_COIN_LENGTH = 5


def to_exchange_symbol(coin: str, quote_asset: str = "USDT") -> str:
    coin = coin.upper().strip()
    if coin.endswith(quote_asset):
        return coin
    return f"{coin}{quote_asset}"


def to_coin(symbol: str) -> Optional[str]:
    """BTCUSDT -> BTC. Returns None for pairs the arena does not trade."""
    match = _SYMBOL_RE.match(symbol.upper())
    if not match:
        return None
    coin = match.group(1)
    if len(coin) > MAX_COIN_LENGTH:
        return None
    return coin
