"""
Main entry point - wires the arena together and runs both periodic drivers.
"""
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from .agents.decision import DecisionAgent
from .agents.market_data import MarketDataAgent, PriceCache
from .agents.observability import ObservabilityAgent
from .agents.orchestrator import Orchestrator
from .config import TradingConfig, load_config
from .exchange.factory import OrderClientFactory
from .metrics import leaderboard
from .scheduler import CycleScheduler, SnapshotScheduler
from .schemas import Agent, CycleSummary
from .storage import JsonFileStore, TradingStore

logger = logging.getLogger("arena_trader.main")


def seed_agents(store: TradingStore, agents_file: str, cfg: TradingConfig) -> int:
    """Create agents listed in a JSON file that the store does not know yet (matched by name)."""
    path = Path(agents_file)
    if not path.exists():
        logger.warning(f"AGENTS_FILE {agents_file} not found, no agents seeded")
        return 0

    with open(path, "r") as f:
        records = json.load(f)

    known = {a.name for a in store.list_agents()}
    created = 0
    for record in records:
        if record.get("name") in known:
            continue
        record.setdefault("initial_balance", cfg.initial_balance)
        record.setdefault("balance", record["initial_balance"])
        agent = Agent.model_validate(record)
        store.save_agent(agent)
        created += 1
        logger.info(f"Seeded agent {agent.name} ({cfg.get_mode_description(agent.trading_mode)})")
    return created


class TradingArena:
    """Owns the collaborators and both schedulers."""

    def __init__(self, cfg: TradingConfig):
        self.cfg = cfg
        self.store = JsonFileStore(cfg.data_dir)
        self.price_cache = PriceCache(ttl_seconds=cfg.price_cache_seconds)
        self.market_data = MarketDataAgent(cfg, cache=self.price_cache)
        self.clients = OrderClientFactory(cfg, self.price_cache)
        self.orchestrator = Orchestrator(
            config=cfg,
            store=self.store,
            market_data=self.market_data,
            decision=DecisionAgent(cfg),
            clients=self.clients,
            observability=ObservabilityAgent(cfg),
        )
        self.cycles = CycleScheduler(
            self.orchestrator.run_cycle,
            interval_seconds=cfg.cycle_seconds,
            on_summary=self._on_summary,
        )
        self.snapshots = SnapshotScheduler(
            self.store,
            interval_seconds=cfg.snapshot_seconds,
            retention_hours=cfg.snapshot_retention_hours,
        )
        self.stop_event = asyncio.Event()

    def _on_summary(self, summary: CycleSummary):
        if summary.skipped:
            return
        for row in leaderboard(self.store.list_agents()):
            logger.info(
                f"#{row['rank']} {row['name']} [{row['mode']}/{row['status']}] "
                f"${row['balance']:.2f} ({row['pnl_pct']:+.2f}%) "
                f"win {row['win_rate']:.0f}% over {row['total_trades']} trades"
            )

    def stop(self):
        logger.info("Shutdown requested")
        self.stop_event.set()

    async def run(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                signal.signal(sig, lambda *_: self.stop())

        logger.info("=" * 60)
        logger.info("ARENA TRADER STARTING")
        logger.info(f"Agents: {len(self.store.list_agents())}")
        logger.info(f"Cycle: {self.cfg.cycle_seconds}s | Snapshots: {self.cfg.snapshot_seconds}s")
        logger.info(f"Exposure ceiling: {self.cfg.exposure_ceiling:.0%}")
        logger.info(f"Live trading: {'ENABLED' if self.cfg.can_trade_live() else 'disabled'}")
        logger.info("=" * 60)

        try:
            await asyncio.gather(
                self.cycles.run_forever(self.stop_event),
                self.snapshots.run_forever(self.stop_event),
            )
        finally:
            await self.shutdown()

    async def shutdown(self):
        await self.clients.aclose()
        await self.market_data.aclose()
        logger.info("Goodbye!")


def main():
    """Entry point."""
    try:
        cfg = load_config()
    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}")
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not cfg.openai_api_key:
        logger.warning("OPENAI_API_KEY not set. Agent decisions will fall back to no action.")

    arena = TradingArena(cfg)
    if cfg.agents_file:
        seed_agents(arena.store, cfg.agents_file, cfg)

    asyncio.run(arena.run())


if __name__ == "__main__":
    main()
