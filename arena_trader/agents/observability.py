"""
ObservabilityAgent - Logging and audit trail.

Purpose: Write every cycle summary and every trade to disk; keep the audit trail complete.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List

from ..config import TradingConfig
from ..schemas import CycleSummary, Trade, utcnow

logger = logging.getLogger("arena_trader.agents.observability")


class ObservabilityAgent:
    """Logs cycle results and trades for audit."""

    def __init__(self, config: TradingConfig):
        self.config = config
        self.log_dir = Path(config.data_dir) / "logs"
        self._ensure_log_dir()

    def _ensure_log_dir(self):
        self.log_dir.mkdir(parents=True, exist_ok=True)
        (self.log_dir / "cycles").mkdir(exist_ok=True)
        (self.log_dir / "trades").mkdir(exist_ok=True)

    def log_cycle(self, summary: CycleSummary):
        """Write the full cycle summary and a one-line digest."""
        timestamp = summary.started_at.strftime("%Y%m%d_%H%M%S")
        filename = self.log_dir / "cycles" / f"cycle_{timestamp}_{summary.cycle_id[:8]}.json"

        try:
            with open(filename, "w") as f:
                json.dump(summary.model_dump(mode="json"), f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Failed to log cycle: {e}")

        logger.info(
            f"CYCLE SUMMARY | "
            f"Agents: {summary.agents_processed} | "
            f"Opened: {summary.trades_opened} | "
            f"Closed: {summary.trades_closed} | "
            f"Failures: {len(summary.failures)} | "
            f"Prices: {'yes' if summary.prices_available else 'no'} | "
            f"Duration: {summary.duration_ms:.0f}ms"
        )
        for failure in summary.failures:
            logger.warning(
                f"CYCLE FAILURE | {failure.agent_name} | {failure.stage} | "
                f"{failure.error_type}: {failure.message}"
            )

    def log_trade(self, trade: Trade):
        """Append one trade to the daily JSONL file."""
        date_str = trade.timestamp.strftime("%Y%m%d")
        trades_file = self.log_dir / "trades" / f"trades_{date_str}.jsonl"

        try:
            with open(trades_file, "a") as f:
                f.write(json.dumps(trade.model_dump(mode="json"), default=str) + "\n")
        except OSError as e:
            logger.error(f"Failed to log trade: {e}")
            return

        logger.info(
            f"Trade logged: {trade.agent_name} {trade.kind.value} {trade.symbol} "
            f"{trade.direction.value} ${trade.notional_usd:.2f} @ {trade.price}"
        )

    def get_trades_today(self) -> List[dict]:
        return self.read_trades(utcnow())

    def read_trades(self, day: datetime) -> List[dict]:
        trades_file = self.log_dir / "trades" / f"trades_{day.strftime('%Y%m%d')}.jsonl"
        trades = []
        if trades_file.exists():
            with open(trades_file, "r") as f:
                for line in f:
                    if line.strip():
                        trades.append(json.loads(line))
        return trades

    def get_recent_cycles(self, limit: int = 10) -> List[dict]:
        cycles_dir = self.log_dir / "cycles"
        files = sorted(cycles_dir.glob("cycle_*.json"), reverse=True)[:limit]
        cycles = []
        for path in files:
            with open(path, "r") as f:
                cycles.append(json.load(f))
        return cycles
