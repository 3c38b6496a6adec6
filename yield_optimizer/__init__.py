"""DeFi yield optimizer for Morpho Blue and Aave v3 lending markets."""

__version__ = "0.1.0"
