"""Execution collaborator — gas simulation and blockchain-writing legs."""
from typing import Protocol

from ..models import SimulationResult, TxResult


class ExecutionClient(Protocol):
    """Signs and submits withdraw/supply transactions for one protocol.

    ``execute_supply`` covers any token approval the deposit needs.
    """

    async def simulate_withdraw(self, market_id: str, amount: int) -> SimulationResult: ...

    async def simulate_supply(self, market_id: str, amount: int) -> SimulationResult: ...

    async def execute_withdraw(self, market_id: str, amount: int) -> TxResult: ...

    async def execute_supply(self, market_id: str, amount: int) -> TxResult: ...

    async def get_gas_price(self) -> int: ...
