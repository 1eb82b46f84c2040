"""
Persistence for agents, positions, trades and balance snapshots.

Positions and agents are mutable records keyed by id. Trades and snapshots are
append-only; snapshots are the only records ever deleted (retention prune).
"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .schemas import Agent, BalanceSnapshot, Position, PositionStatus, Trade, TradeKind

logger = logging.getLogger("arena_trader.storage")


class TradingStore(ABC):
    """Storage collaborator used by the ledger, reconciler and schedulers."""

    @abstractmethod
    def list_agents(self) -> List[Agent]: ...

    @abstractmethod
    def get_agent(self, agent_id: str) -> Optional[Agent]: ...

    @abstractmethod
    def save_agent(self, agent: Agent) -> Agent: ...

    @abstractmethod
    def create_position(self, position: Position) -> Position: ...

    @abstractmethod
    def update_position(self, position: Position) -> Position: ...

    @abstractmethod
    def get_position(self, position_id: str) -> Optional[Position]: ...

    @abstractmethod
    def list_positions(
        self,
        agent_id: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[Position]: ...

    @abstractmethod
    def append_trade(self, trade: Trade) -> Trade: ...

    @abstractmethod
    def list_trades(self, agent_id: Optional[str] = None, kind: Optional[TradeKind] = None) -> List[Trade]: ...

    @abstractmethod
    def append_snapshot(self, snapshot: BalanceSnapshot) -> BalanceSnapshot: ...

    @abstractmethod
    def list_snapshots(
        self,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BalanceSnapshot]: ...

    @abstractmethod
    def prune_snapshots(self, before: datetime) -> int:
        """Delete snapshots older than `before`. Returns the number removed."""


class InMemoryStore(TradingStore):
    def __init__(self):
        self._agents: Dict[str, Agent] = {}
        self._positions: Dict[str, Position] = {}
        self._trades: List[Trade] = []
        self._snapshots: List[BalanceSnapshot] = []

    def list_agents(self) -> List[Agent]:
        return [a.model_copy(deep=True) for a in self._agents.values()]

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent else None

    def save_agent(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent.model_copy(deep=True)
        return agent

    def create_position(self, position: Position) -> Position:
        if position.id in self._positions:
            raise ValueError(f"Position {position.id} already exists")
        self._positions[position.id] = position.model_copy(deep=True)
        return position

    def update_position(self, position: Position) -> Position:
        if position.id not in self._positions:
            raise KeyError(f"Position {position.id} not found")
        self._positions[position.id] = position.model_copy(deep=True)
        return position

    def get_position(self, position_id: str) -> Optional[Position]:
        position = self._positions.get(position_id)
        return position.model_copy(deep=True) if position else None

    def list_positions(
        self,
        agent_id: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[Position]:
        return [
            p.model_copy(deep=True)
            for p in self._positions.values()
            if (agent_id is None or p.agent_id == agent_id)
            and (status is None or p.status == status)
        ]

    def append_trade(self, trade: Trade) -> Trade:
        self._trades.append(trade)
        return trade

    def list_trades(self, agent_id: Optional[str] = None, kind: Optional[TradeKind] = None) -> List[Trade]:
        return [
            t for t in self._trades
            if (agent_id is None or t.agent_id == agent_id) and (kind is None or t.kind == kind)
        ]

    def append_snapshot(self, snapshot: BalanceSnapshot) -> BalanceSnapshot:
        self._snapshots.append(snapshot)
        return snapshot

    def list_snapshots(
        self,
        agent_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[BalanceSnapshot]:
        return [
            s for s in self._snapshots
            if (agent_id is None or s.agent_id == agent_id) and (since is None or s.timestamp >= since)
        ]

    def prune_snapshots(self, before: datetime) -> int:
        kept = [s for s in self._snapshots if s.timestamp >= before]
        removed = len(self._snapshots) - len(kept)
        self._snapshots = kept
        return removed


class JsonFileStore(InMemoryStore):
    """
    InMemoryStore that writes through to files under data_dir:

        agents.json       {id: agent}
        positions.json    {id: position}
        trades.jsonl      one trade per line
        snapshots.jsonl   one snapshot per line
    """

    def __init__(self, data_dir: str):
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.agents_file = self.data_dir / "agents.json"
        self.positions_file = self.data_dir / "positions.json"
        self.trades_file = self.data_dir / "trades.jsonl"
        self.snapshots_file = self.data_dir / "snapshots.jsonl"
        self._load()

    def _load(self):
        for record in self._read_json(self.agents_file).values():
            agent = Agent.model_validate(record)
            self._agents[agent.id] = agent
        for record in self._read_json(self.positions_file).values():
            position = Position.model_validate(record)
            self._positions[position.id] = position
        self._trades = [Trade.model_validate(r) for r in self._read_jsonl(self.trades_file)]
        self._snapshots = [BalanceSnapshot.model_validate(r) for r in self._read_jsonl(self.snapshots_file)]
        logger.info(
            f"Loaded store from {self.data_dir}: {len(self._agents)} agents, "
            f"{len(self._positions)} positions, {len(self._trades)} trades"
        )

    @staticmethod
    def _read_json(path: Path) -> dict:
        if not path.exists():
            return {}
        with open(path, "r") as f:
            return json.load(f)

    @staticmethod
    def _read_jsonl(path: Path) -> List[dict]:
        if not path.exists():
            return []
        records = []
        with open(path, "r") as f:
            for line in f:
                if line.strip():
                    records.append(json.loads(line))
        return records

    def _write_json(self, path: Path, records: dict):
        tmp = path.with_suffix(".tmp")
        with open(tmp, "w") as f:
            json.dump(records, f, indent=2, default=str)
        tmp.replace(path)

    @staticmethod
    def _append_line(path: Path, record: dict):
        with open(path, "a") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def _flush_agents(self):
        self._write_json(self.agents_file, {k: v.model_dump(mode="json") for k, v in self._agents.items()})

    def _flush_positions(self):
        self._write_json(self.positions_file, {k: v.model_dump(mode="json") for k, v in self._positions.items()})

    def save_agent(self, agent: Agent) -> Agent:
        super().save_agent(agent)
        self._flush_agents()
        return agent

    def create_position(self, position: Position) -> Position:
        super().create_position(position)
        self._flush_positions()
        return position

    def update_position(self, position: Position) -> Position:
        super().update_position(position)
        self._flush_positions()
        return position

    def append_trade(self, trade: Trade) -> Trade:
        super().append_trade(trade)
        self._append_line(self.trades_file, trade.model_dump(mode="json"))
        return trade

    def append_snapshot(self, snapshot: BalanceSnapshot) -> BalanceSnapshot:
        super().append_snapshot(snapshot)
        self._append_line(self.snapshots_file, snapshot.model_dump(mode="json"))
        return snapshot

    def prune_snapshots(self, before: datetime) -> int:
        removed = super().prune_snapshots(before)
        if removed:
            tmp = self.snapshots_file.with_suffix(".tmp")
            with open(tmp, "w") as f:
                for snapshot in self._snapshots:
                    f.write(json.dumps(snapshot.model_dump(mode="json"), default=str) + "\n")
            tmp.replace(self.snapshots_file)
        return removed
