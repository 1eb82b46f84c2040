"""
Configuration management with safety latches for trading modes.
"""
import os
from dataclasses import dataclass
from enum import Enum


class TradingMode(str, Enum):
    PAPER = "paper"
    LIVE = "live"


@dataclass
class TradingConfig:
    aster_base_url: str = "https://fapi.asterdex.com"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    live_trading_enabled: bool = False
    quote_asset: str = "USDT"

    exposure_ceiling: float = 0.70
    initial_balance: float = 1000.0
    default_stop_loss_pct: float = 2.0
    default_take_profit_pct: float = 3.0

    cycle_seconds: float = 30.0
    snapshot_seconds: float = 1.0
    snapshot_retention_hours: float = 24.0
    price_cache_seconds: float = 5.0

    http_timeout_seconds: float = 10.0
    decision_timeout_seconds: float = 20.0
    recv_window_ms: int = 50000

    decision_history_limit: int = 50
    slow_balance_ratio: float = 0.5
    error_balance_ratio: float = 0.1

    data_dir: str = "arena_trader/data"
    agents_file: str = ""
    log_level: str = "INFO"

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Reject settings the engine cannot run with."""
        if not 0 < self.exposure_ceiling <= 1:
            raise ValueError(
                f"EXPOSURE_CEILING must be in (0, 1], got {self.exposure_ceiling}"
            )
        if self.cycle_seconds <= 0 or self.snapshot_seconds <= 0:
            raise ValueError("CYCLE_SECONDS and SNAPSHOT_SECONDS must be positive")
        if self.initial_balance <= 0:
            raise ValueError("INITIAL_BALANCE must be positive")
        if self.default_stop_loss_pct <= 0 or self.default_take_profit_pct <= 0:
            raise ValueError("Default stop-loss/take-profit percentages must be positive")

    def can_trade_live(self) -> bool:
        """Live orders need the explicit LIVE_TRADING_ENABLED latch."""
        return self.live_trading_enabled

    def get_mode_description(self, mode: TradingMode) -> str:
        """Get human-readable description of an agent's mode."""
        if mode == TradingMode.PAPER:
            return "PAPER: Positions simulated against exchange prices"
        if mode == TradingMode.LIVE:
            if self.live_trading_enabled:
                return "LIVE: Real orders signed and sent to the exchange"
            return "LIVE: Blocked (LIVE_TRADING_ENABLED is false)"
        return "UNKNOWN"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config() -> TradingConfig:
    """Load configuration from environment variables."""
    return TradingConfig(
        aster_base_url=os.getenv("ASTER_BASE_URL", "https://fapi.asterdex.com"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        live_trading_enabled=_env_bool("LIVE_TRADING_ENABLED"),
        quote_asset=os.getenv("QUOTE_ASSET", "USDT").upper(),
        exposure_ceiling=float(os.getenv("EXPOSURE_CEILING", "0.70")),
        initial_balance=float(os.getenv("INITIAL_BALANCE", "1000")),
        default_stop_loss_pct=float(os.getenv("DEFAULT_STOP_LOSS_PCT", "2.0")),
        default_take_profit_pct=float(os.getenv("DEFAULT_TAKE_PROFIT_PCT", "3.0")),
        cycle_seconds=float(os.getenv("CYCLE_SECONDS", "30")),
        snapshot_seconds=float(os.getenv("SNAPSHOT_SECONDS", "1")),
        snapshot_retention_hours=float(os.getenv("SNAPSHOT_RETENTION_HOURS", "24")),
        price_cache_seconds=float(os.getenv("PRICE_CACHE_SECONDS", "5")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
        decision_timeout_seconds=float(os.getenv("DECISION_TIMEOUT_SECONDS", "20")),
        recv_window_ms=int(os.getenv("RECV_WINDOW_MS", "50000")),
        decision_history_limit=int(os.getenv("DECISION_HISTORY_LIMIT", "50")),
        data_dir=os.getenv("DATA_DIR", "arena_trader/data"),
        agents_file=os.getenv("AGENTS_FILE", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
