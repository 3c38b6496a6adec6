"""Price oracle protocol — USD price feed abstraction."""
from typing import Protocol


class PriceOracle(Protocol):
    """Abstract interface for fetching USD prices keyed by token symbol."""

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]: ...
