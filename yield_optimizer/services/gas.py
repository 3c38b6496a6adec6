"""Gas valuation — converts a native-token gas cost into loan-token units."""
from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import AppConfig
from ..errors import GasEstimationError
from ..interfaces import PriceOracle

logger = logging.getLogger(__name__)

NATIVE_DECIMALS = 18


class GasQuoter:
    """Price a gas cost in the loan token so it can be compared with yield.

    cost_in_token = cost_wei / 1e18 * native_usd / token_usd * 10**decimals
    """

    def __init__(self, config: AppConfig, oracle: PriceOracle) -> None:
        self._config = config
        self._oracle = oracle
        self._native_symbol = config.execution.native_symbol

    async def to_token_units(self, cost_wei: int, loan_token: str) -> float:
        if cost_wei <= 0:
            return 0.0

        found = self._config.token_by_address(loan_token)
        if found is None:
            raise GasEstimationError(f"No token config for loan token {loan_token}")
        symbol, token = found

        prices = await self._oracle.fetch_prices([self._native_symbol, symbol])
        native_usd = prices.get(self._native_symbol)
        token_usd = prices.get(symbol)
        if not native_usd or not token_usd:
            raise GasEstimationError(
                f"Missing price for {self._native_symbol}/{symbol}: {prices}"
            )

        cost = cost_wei / 10**NATIVE_DECIMALS * native_usd / token_usd * 10**token.decimals
        logger.debug("Gas cost %d wei = %.2f %s units", cost_wei, cost, symbol)
        return cost

    async def usd_valuer(self) -> Callable[[str, int], float]:
        """Snapshot current prices into a (token address, amount) -> USD function.

        Tokens without config or price are valued at zero.
        """
        prices = await self._oracle.fetch_prices()

        def usd_value(token_address: str, amount: int) -> float:
            found = self._config.token_by_address(token_address)
            if found is None or amount <= 0:
                return 0.0
            symbol, token = found
            return amount / 10**token.decimals * prices.get(symbol, 0.0)

        return usd_value
