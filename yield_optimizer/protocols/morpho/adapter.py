"""Morpho Blue market source — reads markets and positions from the Morpho API."""
from __future__ import annotations

import logging

from ...config import ChainConfig, ProtocolConfig
from ...errors import MarketDataError
from ...models import ProtocolName, RawMarket, RawPosition
from ..graphql import post_graphql
from . import parser
from .queries import MARKET_QUERY, MORPHO_API_URL, POSITION_QUERY

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No results matching given parameters"


class MorphoAdapter:
    """Fetch configured Morpho Blue markets and user positions."""

    def __init__(self, config: ProtocolConfig, chain: ChainConfig) -> None:
        self._config = config
        self._chain_id = chain.chain_id
        self._timeout = chain.rpc_timeout
        self._api_url = config.api_url or MORPHO_API_URL

    @property
    def protocol(self) -> ProtocolName:
        return ProtocolName.MORPHO

    def market_ids(self) -> tuple[str, ...]:
        return self._config.market_ids()

    async def fetch_market(self, market_id: str) -> RawMarket:
        name, market = self._config.require_market(self.protocol.value, market_id)
        data = await post_graphql(
            self._api_url,
            MARKET_QUERY,
            {"uniqueKey": market.market_id, "chainId": self._chain_id},
            timeout=self._timeout,
        )
        market_data = data.get("marketByUniqueKey")
        if not market_data:
            raise MarketDataError(f"Morpho market {name} ({market.market_id}) not found")

        raw = parser.parse_market(market_data, name, market)
        logger.debug(
            "Morpho %s: supply=%d borrow=%d", name, raw.total_supply_assets, raw.total_borrow_assets
        )
        return raw

    async def fetch_position(self, user_address: str, market_id: str) -> RawPosition:
        _, market = self._config.require_market(self.protocol.value, market_id)
        try:
            data = await post_graphql(
                self._api_url,
                POSITION_QUERY,
                {
                    "userAddress": user_address,
                    "uniqueKey": market.market_id,
                    "chainId": self._chain_id,
                },
                timeout=self._timeout,
            )
        except MarketDataError as e:
            # The API answers "no results" for wallets that never touched the market.
            if NO_RESULTS_MESSAGE in str(e):
                return RawPosition()
            raise
        return parser.parse_position(data.get("marketPosition"))
