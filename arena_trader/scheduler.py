"""
Periodic drivers: the trading cycle (default every 30s) and balance snapshots
(default every 1s).

The cycle driver runs one cycle at a time. A tick that arrives while a cycle
is still running is skipped, not queued.
"""
import asyncio
import logging
from datetime import timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .schemas import BalanceSnapshot, CycleSummary, utcnow
from .storage import TradingStore

logger = logging.getLogger("arena_trader.scheduler")


class CycleState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class CycleScheduler:
    """Idle -> Running -> Idle around a cycle coroutine."""

    def __init__(
        self,
        run_cycle: Callable[[], Awaitable[CycleSummary]],
        interval_seconds: float = 30.0,
        on_summary: Optional[Callable[[CycleSummary], None]] = None,
    ):
        self._run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self.on_summary = on_summary
        self.state = CycleState.IDLE
        self.cycles_run = 0
        self.cycles_skipped = 0
        self._current: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self.state == CycleState.RUNNING

    async def try_run_cycle(self) -> CycleSummary:
        """Run a cycle now, or return a skipped summary if one is in flight."""
        if self.state == CycleState.RUNNING:
            self.cycles_skipped += 1
            logger.warning("CYCLE SKIPPED: previous cycle still running")
            return CycleSummary.skipped_cycle()

        self.state = CycleState.RUNNING
        try:
            summary = await self._run_cycle()
        except Exception as e:
            logger.error(f"Cycle raised unexpectedly: {e}", exc_info=True)
            summary = CycleSummary(finished_at=utcnow())
        finally:
            self.state = CycleState.IDLE

        self.cycles_run += 1
        if self.on_summary:
            self.on_summary(summary)
        return summary

    async def run_forever(self, stop_event: asyncio.Event):
        """Fire a cycle every interval until stop_event is set."""
        logger.info(f"Cycle scheduler started (every {self.interval_seconds}s)")
        while not stop_event.is_set():
            if self._current is None or self._current.done():
                self._current = asyncio.create_task(self.try_run_cycle())
            else:
                await self.try_run_cycle()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        if self._current is not None and not self._current.done():
            logger.info("Waiting for in-flight cycle to finish...")
            await self._current
        logger.info(f"Cycle scheduler stopped ({self.cycles_run} run, {self.cycles_skipped} skipped)")


class SnapshotScheduler:
    """Appends a BalanceSnapshot per agent on a short interval and prunes old ones."""

    def __init__(
        self,
        store: TradingStore,
        interval_seconds: float = 1.0,
        retention_hours: float = 24.0,
        prune_every: int = 3600,
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self.retention = timedelta(hours=retention_hours)
        self.prune_every = prune_every
        self._ticks = 0

    def take_snapshot(self) -> List[BalanceSnapshot]:
        now = utcnow()
        snapshots = []
        for agent in self.store.list_agents():
            snapshot = BalanceSnapshot(
                agent_id=agent.id,
                agent_name=agent.name,
                balance=agent.balance,
                pnl=agent.pnl,
                pnl_absolute=agent.pnl_absolute,
                timestamp=now,
            )
            self.store.append_snapshot(snapshot)
            snapshots.append(snapshot)
        return snapshots

    def prune(self) -> int:
        removed = self.store.prune_snapshots(utcnow() - self.retention)
        if removed:
            logger.info(f"Pruned {removed} balance snapshots older than {self.retention}")
        return removed

    def tick(self):
        self.take_snapshot()
        self._ticks += 1
        if self._ticks % self.prune_every == 0:
            self.prune()

    async def run_forever(self, stop_event: asyncio.Event):
        logger.info(f"Snapshot scheduler started (every {self.interval_seconds}s)")
        self.prune()
        while not stop_event.is_set():
            try:
                self.tick()
            except OSError as e:
                logger.error(f"Snapshot failed: {e}")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Snapshot scheduler stopped")
