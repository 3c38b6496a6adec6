"""Advisory execution client — simulates legs but never signs transactions."""
from __future__ import annotations

import logging

from ..interfaces import ChainClient
from ..models import ProtocolName, SimulationResult, TxResult

logger = logging.getLogger(__name__)

DRY_RUN_ERROR = "dry run"


class DryRunExecution:
    """Execution collaborator for deployments without a signing backend.

    Each leg is quoted at a fixed gas limit and priced at the live chain gas
    price, so the payback check runs on real numbers. Writes always fail with
    ``"dry run"``; the orchestrator reports them like any failed leg.
    """

    def __init__(self, protocol: ProtocolName, chain: ChainClient, gas_limit_per_leg: int) -> None:
        self.protocol = protocol
        self._chain = chain
        self._gas_limit = gas_limit_per_leg

    async def simulate_withdraw(self, market_id: str, amount: int) -> SimulationResult:
        return SimulationResult(success=True, gas_estimate=self._gas_limit)

    async def simulate_supply(self, market_id: str, amount: int) -> SimulationResult:
        return SimulationResult(success=True, gas_estimate=self._gas_limit)

    async def execute_withdraw(self, market_id: str, amount: int) -> TxResult:
        logger.info("[dry run] withdraw %d from %s %s", amount, self.protocol.value, market_id)
        return TxResult(success=False, error=DRY_RUN_ERROR)

    async def execute_supply(self, market_id: str, amount: int) -> TxResult:
        logger.info("[dry run] supply %d to %s %s", amount, self.protocol.value, market_id)
        return TxResult(success=False, error=DRY_RUN_ERROR)

    async def get_gas_price(self) -> int:
        return await self._chain.get_gas_price()
