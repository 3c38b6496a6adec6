"""Exception hierarchy raised by collaborators and caught at service boundaries."""
from __future__ import annotations


class YieldOptimizerError(Exception):
    """Base class for all errors raised by this package."""


class MarketDataError(YieldOptimizerError):
    """A market snapshot or position could not be read."""


class UnknownMarketError(YieldOptimizerError, ValueError):
    """A market id is not present in the protocol configuration."""

    def __init__(self, protocol: str, market_id: str) -> None:
        super().__init__(f"Unknown {protocol} market: {market_id}")
        self.protocol = protocol
        self.market_id = market_id


class GasEstimationError(YieldOptimizerError):
    """Gas for a rebalance leg could not be estimated or valued."""
