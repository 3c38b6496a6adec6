"""Blockchain clients."""
from .evm import EvmClient

__all__ = ["EvmClient"]
