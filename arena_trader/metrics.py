"""
Metrics for the arena - display status and leaderboard.
"""
from typing import Dict, List

from .config import TradingConfig
from .schemas import Agent, AgentStatus


def display_status(agent: Agent, cfg: TradingConfig) -> AgentStatus:
    """Display-only health signal; never consulted by the trading cycle."""
    if agent.balance < agent.initial_balance * cfg.error_balance_ratio:
        return AgentStatus.ERROR
    if agent.balance < agent.initial_balance * cfg.slow_balance_ratio:
        return AgentStatus.SLOW
    return AgentStatus.ACTIVE


def leaderboard(agents: List[Agent]) -> List[Dict]:
    """Agents ranked by cumulative PnL percentage, best first."""
    ranked = sorted(agents, key=lambda a: a.pnl, reverse=True)
    return [
        {
            "rank": i + 1,
            "name": agent.name,
            "mode": agent.trading_mode.value,
            "balance": round(agent.balance, 2),
            "pnl_pct": round(agent.pnl, 2),
            "pnl_usd": round(agent.pnl_absolute, 2),
            "win_rate": round(agent.win_rate, 1),
            "total_trades": agent.total_trades,
            "status": agent.status.value,
        }
        for i, agent in enumerate(ranked)
    ]

