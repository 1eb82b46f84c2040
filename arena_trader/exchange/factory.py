"""
Picks the order client for an agent based on its trading mode.
"""
import logging
from typing import Dict, Mapping, Optional

from ..config import TradingConfig
from ..errors import LiveTradingDisabled
from ..schemas import Agent
from .client import AsterClient, OrderClient
from .paper import PaperOrderClient
from .wallet import resolve_wallet

logger = logging.getLogger("arena_trader.exchange.factory")


class OrderClientFactory:
    """Hands out one PaperOrderClient for all paper agents and one AsterClient per live agent."""

    def __init__(
        self,
        config: TradingConfig,
        price_cache,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.paper_client = PaperOrderClient(price_cache)
        self._environ = environ
        self._live_clients: Dict[str, AsterClient] = {}

    def for_agent(self, agent: Agent) -> OrderClient:
        """
        Raises:
            LiveTradingDisabled: live agent while the latch is off
            AuthenticationFailed: live agent without usable wallet credentials
        """
        if not agent.is_live:
            return self.paper_client

        if not self.config.can_trade_live():
            raise LiveTradingDisabled(
                f"{agent.name} is configured for live trading but LIVE_TRADING_ENABLED is false"
            )

        client = self._live_clients.get(agent.id)
        if client is None:
            credentials = resolve_wallet(agent, self._environ)
            client = AsterClient(
                credentials=credentials,
                base_url=self.config.aster_base_url,
                timeout=self.config.http_timeout_seconds,
                recv_window=self.config.recv_window_ms,
            )
            self._live_clients[agent.id] = client
            logger.info(f"Live client created for {agent.name} (signer {credentials.signer})")
        return client

    async def aclose(self):
        for client in self._live_clients.values():
            await client.aclose()
        self._live_clients.clear()
