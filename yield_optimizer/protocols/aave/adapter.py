"""Aave v3 market source — one market per reserve, keyed by underlying token."""
from __future__ import annotations

import logging

from ...config import ChainConfig, ProtocolConfig
from ...errors import MarketDataError
from ...models import ProtocolName, RawMarket, RawPosition
from ..graphql import post_graphql
from . import parser
from .queries import AAVE_API_URL, RESERVES_QUERY, USER_RESERVES_QUERY

logger = logging.getLogger(__name__)


class AaveAdapter:
    """Fetch configured Aave v3 reserves and user balances."""

    def __init__(self, config: ProtocolConfig, chain: ChainConfig) -> None:
        self._config = config
        self._chain_id = chain.chain_id
        self._timeout = chain.rpc_timeout
        self._api_url = config.api_url or AAVE_API_URL

    @property
    def protocol(self) -> ProtocolName:
        return ProtocolName.AAVE

    def market_ids(self) -> tuple[str, ...]:
        return self._config.market_ids()

    async def fetch_market(self, market_id: str) -> RawMarket:
        name, market = self._config.require_market(self.protocol.value, market_id)
        data = await post_graphql(
            self._api_url,
            RESERVES_QUERY,
            {"chainIds": [self._chain_id]},
            timeout=self._timeout,
        )
        reserves = parser.select_reserves(data.get("markets") or [], self._config.pool_address)
        reserve = parser.find_reserve(reserves, market.market_id)
        if reserve is None:
            raise MarketDataError(f"Aave reserve {name} ({market.market_id}) not found")
        return parser.parse_reserve(reserve, name, market.lltv)

    async def fetch_position(self, user_address: str, market_id: str) -> RawPosition:
        name, market = self._config.require_market(self.protocol.value, market_id)
        data = await post_graphql(
            self._api_url,
            USER_RESERVES_QUERY,
            {"chainIds": [self._chain_id], "user": user_address},
            timeout=self._timeout,
        )
        reserves = parser.select_reserves(data.get("markets") or [], self._config.pool_address)
        reserve = parser.find_reserve(reserves, market.market_id)
        if reserve is None:
            logger.debug("No Aave reserve %s for %s", name, user_address)
        return parser.parse_user_reserve(reserve)
