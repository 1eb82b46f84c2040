"""
Storage tests - file-backed store survives a restart.
"""
import json
from datetime import timedelta

from arena_trader.agents.ledger import PositionLedger
from arena_trader.main import seed_agents
from arena_trader.schemas import Agent, BalanceSnapshot, Direction, PositionRequest, PositionStatus, utcnow
from arena_trader.storage import InMemoryStore, JsonFileStore


class TestJsonFileStore:

    def test_reload_restores_state(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        agent = Agent(name="Alpha")
        store.save_agent(agent)
        ledger = PositionLedger(store)
        position, _ = ledger.open_position(agent, PositionRequest(
            symbol="ETH", direction=Direction.SHORT, entry_price=2500.0, notional_usd=200.0,
            leverage=5, stop_loss=2600.0, take_profit=2300.0,
        ))
        ledger.close_position(position, 2450.0, "target")

        reloaded = JsonFileStore(str(tmp_path))
        assert reloaded.get_agent(agent.id).name == "Alpha"
        stored = reloaded.get_position(position.id)
        assert stored.status == PositionStatus.CLOSED
        assert stored.exit_price == 2450.0
        assert len(reloaded.list_trades(agent_id=agent.id)) == 2

    def test_prune_rewrites_snapshot_file(self, tmp_path):
        store = JsonFileStore(str(tmp_path))
        now = utcnow()
        store.append_snapshot(BalanceSnapshot(agent_id="a", balance=1.0, timestamp=now - timedelta(hours=30)))
        store.append_snapshot(BalanceSnapshot(agent_id="a", balance=2.0, timestamp=now))

        assert store.prune_snapshots(now - timedelta(hours=24)) == 1
        assert [s.balance for s in JsonFileStore(str(tmp_path)).list_snapshots()] == [2.0]

    def test_returned_copies_do_not_alias(self):
        store = InMemoryStore()
        agent = Agent(name="Alpha")
        store.save_agent(agent)
        store.get_agent(agent.id).balance = 1.0
        assert store.get_agent(agent.id).balance == 1000.0


class TestSeedAgents:

    def test_seeds_new_agents_once(self, tmp_path, config):
        agents_file = tmp_path / "agents.json"
        agents_file.write_text(json.dumps([
            {"name": "Alpha", "strategy": "momentum"},
            {"name": "Bravo", "trading_mode": "live", "initial_balance": 500.0},
        ]))
        store = InMemoryStore()

        assert seed_agents(store, str(agents_file), config) == 2
        assert seed_agents(store, str(agents_file), config) == 0

        by_name = {a.name: a for a in store.list_agents()}
        assert by_name["Alpha"].balance == 1000.0
        assert by_name["Bravo"].balance == 500.0
        assert by_name["Bravo"].is_live

    def test_missing_file_seeds_nothing(self, tmp_path, config):
        assert seed_agents(InMemoryStore(), str(tmp_path / "nope.json"), config) == 0
