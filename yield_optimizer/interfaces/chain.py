"""Chain client protocol — EVM JSON-RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for the read-only blockchain calls the core needs."""

    async def rpc_call(self, method: str, params: list[Any]) -> Any: ...

    async def get_gas_price(self) -> int: ...

    async def get_erc20_balance(self, token_address: str, owner: str) -> int: ...
