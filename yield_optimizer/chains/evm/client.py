"""EVM JSON-RPC client with fallback support."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig

logger = logging.getLogger(__name__)

# keccak256("balanceOf(address)")[:4]
BALANCE_OF_SELECTOR = "0x70a08231"


def encode_balance_of(owner: str) -> str:
    """ABI-encode a balanceOf(owner) call."""
    return BALANCE_OF_SELECTOR + owner.lower().removeprefix("0x").rjust(64, "0")


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC hex quantity ("0x1a") or raw eth_call word into an int."""
    if isinstance(value, int):
        return value
    if not value or value == "0x":
        return 0
    return int(value, 16)


class EvmClient:
    """EVM blockchain RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.current_rpc_index = 0
        self._request_id = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RuntimeError("No RPC endpoints configured")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                continue

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        return parse_quantity(await self.rpc_call("eth_gasPrice", []))

    async def get_erc20_balance(self, token_address: str, owner: str) -> int:
        """Token balance of ``owner`` in token-native units."""
        result = await self.rpc_call(
            "eth_call",
            [{"to": token_address, "data": encode_balance_of(owner)}, "latest"],
        )
        return parse_quantity(result)
