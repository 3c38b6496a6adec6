"""Pure parsing functions for Morpho Blue API payloads — no I/O."""
from __future__ import annotations

from typing import Any

from ...config import MarketConfig
from ...errors import MarketDataError
from ...models import RawMarket, RawPosition
from ...units import fraction_to_wad

WAD_PERCENT = 10**16


def to_int(value: Any) -> int:
    """Parse an API BigInt (string, int or float) into an int; missing → 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        return int(value.split(".")[0])
    return int(value)


def parse_lltv(raw_lltv: Any, fallback: float) -> float:
    """LLTV arrives as a wad string ("860000000000000000" → 86.0)."""
    lltv = to_int(raw_lltv)
    if lltv <= 0:
        return fallback
    return lltv / WAD_PERCENT


def sum_reward_aprs(rewards: list[dict[str, Any]] | None) -> int:
    """Sum supply-side reward APRs into a single wad value."""
    total = 0
    for reward in rewards or []:
        total += fraction_to_wad(reward.get("supplyApr"))
    return total


def parse_market(data: dict[str, Any], name: str, market: MarketConfig) -> RawMarket:
    """Parse a ``marketByUniqueKey`` object into a RawMarket.

    The API reports APYs and utilization as plain fractions (0.05 == 5%);
    they are re-scaled to wad so every protocol hands the core the same units.
    """
    state = data.get("state")
    if not state:
        raise MarketDataError(f"Morpho market {market.market_id} has no state")

    total_supply = to_int(state.get("supplyAssets"))
    total_borrow = to_int(state.get("borrowAssets"))
    liquidity = state.get("liquidityAssets")

    return RawMarket(
        market_id=data.get("uniqueKey") or market.market_id,
        name=name,
        supply_apy=fraction_to_wad(state.get("supplyApy")),
        borrow_apy=fraction_to_wad(state.get("borrowApy")),
        utilization=fraction_to_wad(state.get("utilization")),
        rewards_apy=sum_reward_aprs(state.get("rewards")),
        total_supply_assets=total_supply,
        total_borrow_assets=total_borrow,
        total_supply_shares=to_int(state.get("supplyShares")),
        total_borrow_shares=to_int(state.get("borrowShares")),
        liquidity=to_int(liquidity) if liquidity is not None else max(total_supply - total_borrow, 0),
        collateral_token=(data.get("collateralAsset") or {}).get("address", ""),
        loan_token=(data.get("loanAsset") or {}).get("address", ""),
        lltv=parse_lltv(data.get("lltv"), market.lltv),
    )


def parse_position(data: dict[str, Any] | None) -> RawPosition:
    """Parse a ``marketPosition`` object; a missing position means zero balances."""
    state = (data or {}).get("state") or {}
    return RawPosition(
        supply_shares=to_int(state.get("supplyShares")),
        borrow_shares=to_int(state.get("borrowShares")),
        supply_assets=to_int(state.get("supplyAssets")),
        borrow_assets=to_int(state.get("borrowAssets")),
    )
