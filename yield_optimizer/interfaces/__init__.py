"""Collaborator interfaces for the yield optimizer."""
from .chain import ChainClient
from .execution import ExecutionClient
from .market_source import MarketSource
from .notifier import Notifier
from .price_oracle import PriceOracle
from .wallet import WalletProvider

__all__ = [
    "ChainClient",
    "ExecutionClient",
    "MarketSource",
    "Notifier",
    "PriceOracle",
    "WalletProvider",
]
