"""
Wallet credentials for live agents.

Each live agent signs with an API wallet (signer) on behalf of its main
account wallet (user). Keys come from the environment, never from storage:

    AGENT_<NAME>_PRIVATE_KEY      per-agent signer key, addresses on the agent
    SHARED_ASTER_USER / SHARED_ASTER_SIGNER / SHARED_ASTER_PRIVATE_KEY
                                  fallback shared wallet for all live agents
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from ..errors import AuthenticationFailed
from ..schemas import Agent

logger = logging.getLogger("arena_trader.exchange.wallet")


@dataclass(frozen=True)
class WalletCredentials:
    user: str
    signer: str
    private_key: str = field(repr=False)

    def validate(self) -> None:
        missing = [name for name in ("user", "signer", "private_key") if not getattr(self, name)]
        if missing:
            raise AuthenticationFailed(f"Missing signing inputs: {', '.join(missing)}")


def _env_key(name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", name.upper())


def resolve_wallet(agent: Agent, environ: Optional[Mapping[str, str]] = None) -> WalletCredentials:
    """
    Find signing credentials for a live agent.

    Raises:
        AuthenticationFailed: no complete credential set exists
    """
    env = environ if environ is not None else os.environ

    if agent.aster_user_address and agent.aster_signer_address:
        private_key = (
            env.get(f"AGENT_{_env_key(agent.name)}_PRIVATE_KEY")
            or env.get(f"AGENT_{agent.name}_PRIVATE_KEY")
        )
        if private_key:
            return WalletCredentials(
                user=agent.aster_user_address,
                signer=agent.aster_signer_address,
                private_key=private_key,
            )

    shared_user = env.get("SHARED_ASTER_USER")
    shared_signer = env.get("SHARED_ASTER_SIGNER")
    shared_key = env.get("SHARED_ASTER_PRIVATE_KEY")
    if shared_user and shared_signer and shared_key:
        logger.warning(f"Using shared wallet for {agent.name} - balances are not isolated per agent")
        return WalletCredentials(user=shared_user, signer=shared_signer, private_key=shared_key)

    raise AuthenticationFailed(f"No wallet credentials configured for live agent {agent.name}")
