"""Pure unit conversions — no I/O."""
from __future__ import annotations

from decimal import Decimal

from .models import HEALTHY_SENTINEL

WAD = 10**18

# Morpho Blue SharesMathLib virtual offsets.
VIRTUAL_SHARES = 10**6
VIRTUAL_ASSETS = 1


def wad_to_percentage(value: int) -> float:
    """Convert a wad-scaled fraction to a percentage.

    Examples:
        5 * 10**16 → 5.0
    """
    return value / 1e18 * 100


def fraction_to_wad(value: float | str | Decimal | None) -> int:
    """Convert a plain fraction (0.05 == 5%) to a wad integer."""
    if value is None or value == "":
        return 0
    return int(Decimal(str(value)) * WAD)


def decimal_to_units(value: float | str | Decimal | None, decimals: int) -> int:
    """Convert a human-readable token amount to token-native integer units."""
    if value is None or value == "":
        return 0
    return int(Decimal(str(value)) * (10**decimals))


def to_assets(shares: int, total_assets: int, total_shares: int) -> int:
    """Convert shares to assets, rounding down.

    assets = shares * (total_assets + 1) / (total_shares + 10^6)
    """
    if shares <= 0:
        return 0
    return shares * (total_assets + VIRTUAL_ASSETS) // (total_shares + VIRTUAL_SHARES)


def position_health_factor(supply_assets: int, borrow_assets: int) -> float:
    """Simplified health factor: supply / borrow as a plain ratio.

    This is not the protocols' collateral-value / debt-value liquidation math.
    A position without debt is reported as HEALTHY_SENTINEL.
    """
    if borrow_assets <= 0:
        return HEALTHY_SENTINEL
    return supply_assets / max(borrow_assets, 1)
