"""Lending protocol market sources."""
from .aave import AaveAdapter
from .morpho import MorphoAdapter

__all__ = ["AaveAdapter", "MorphoAdapter"]
