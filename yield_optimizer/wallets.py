"""Wallet registry backed by the configured wallets."""
from __future__ import annotations

import logging

from .config import AppConfig, WalletConfig
from .errors import YieldOptimizerError
from .interfaces import ChainClient

logger = logging.getLogger(__name__)


class StaticWalletRegistry:
    """Resolve user ids to addresses and read deposit-token balances.

    The registry only knows public addresses; signing lives with the
    execution collaborator.
    """

    def __init__(self, config: AppConfig, chains: dict[str, ChainClient]) -> None:
        self._config = config
        self._chains = chains
        self._wallets: dict[str, WalletConfig] = {w.user_id: w for w in config.wallets}

    def user_ids(self) -> tuple[str, ...]:
        return tuple(self._wallets)

    def wallet(self, user_id: str) -> WalletConfig | None:
        return self._wallets.get(user_id)

    def get_address(self, user_id: str) -> str | None:
        wallet = self._wallets.get(user_id)
        return wallet.address if wallet else None

    async def get_balance(self, user_id: str) -> int:
        """Balance of the wallet's deposit token in token-native units."""
        wallet = self._wallets.get(user_id)
        if wallet is None:
            raise YieldOptimizerError(f"Unknown user {user_id}")
        if not wallet.deposit_token:
            raise YieldOptimizerError(f"Wallet '{user_id}' has no deposit_token configured")

        token = self._config.tokens[wallet.deposit_token]
        balance = await self._chains[wallet.chain].get_erc20_balance(token.address, wallet.address)
        logger.debug("%s balance of %s: %d", wallet.deposit_token, user_id, balance)
        return balance
