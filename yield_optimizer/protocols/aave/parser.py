"""Pure parsing functions for Aave v3 API payloads — no I/O."""
from __future__ import annotations

from typing import Any

from ...errors import MarketDataError
from ...models import RawMarket, RawPosition
from ...units import decimal_to_units, fraction_to_wad


def _value(node: dict[str, Any] | None, *path: str) -> Any:
    """Walk nested GraphQL objects, returning None when any step is missing."""
    current: Any = node
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def select_reserves(
    markets: list[dict[str, Any]], pool_address: str = ""
) -> list[dict[str, Any]]:
    """Flatten reserves across markets, restricted to one pool when configured."""
    reserves: list[dict[str, Any]] = []
    for market in markets:
        if pool_address and (market.get("address") or "").lower() != pool_address.lower():
            continue
        reserves.extend(market.get("reserves") or [])
    return reserves


def find_reserve(reserves: list[dict[str, Any]], token_address: str) -> dict[str, Any] | None:
    wanted = token_address.lower()
    for reserve in reserves:
        address = _value(reserve, "underlyingToken", "address") or ""
        if address.lower() == wanted:
            return reserve
    return None


def parse_reserve(reserve: dict[str, Any], name: str, lltv: float = 0.0) -> RawMarket:
    """Parse one Aave reserve into a RawMarket keyed by its underlying token.

    Amounts arrive as decimal strings in token units and are scaled to
    token-native integers. Frozen or paused reserves cannot take deposits and
    are reported as unreadable.
    """
    token = reserve.get("underlyingToken") or {}
    address = token.get("address", "")
    if reserve.get("isFrozen") or reserve.get("isPaused"):
        raise MarketDataError(f"Aave reserve {name} ({address}) is frozen or paused")

    decimals = int(token.get("decimals", 18))
    total_supply = decimal_to_units(_value(reserve, "supplyInfo", "total", "value"), decimals)
    total_borrow = decimal_to_units(
        _value(reserve, "borrowInfo", "total", "amount", "value"), decimals
    )
    available = _value(reserve, "borrowInfo", "availableLiquidity", "amount", "value")
    liquidity = (
        decimal_to_units(available, decimals)
        if available is not None
        else max(total_supply - total_borrow, 0)
    )

    return RawMarket(
        market_id=address,
        name=name,
        supply_apy=fraction_to_wad(_value(reserve, "supplyInfo", "apy", "value")),
        borrow_apy=fraction_to_wad(_value(reserve, "borrowInfo", "apy", "value")),
        utilization=fraction_to_wad(_value(reserve, "borrowInfo", "utilizationRate", "value")),
        total_supply_assets=total_supply,
        total_borrow_assets=total_borrow,
        liquidity=liquidity,
        collateral_token=address,
        loan_token=address,
        lltv=lltv,
    )


def parse_user_reserve(reserve: dict[str, Any] | None) -> RawPosition:
    """Aave positions are plain balances; there are no shares to convert."""
    if reserve is None:
        return RawPosition()
    decimals = int(_value(reserve, "underlyingToken", "decimals") or 18)
    state = reserve.get("userState") or {}
    return RawPosition(
        supply_assets=decimal_to_units(
            _value(state, "suppliedAmount", "amount", "value"), decimals
        ),
        borrow_assets=decimal_to_units(
            _value(state, "borrowedAmount", "amount", "value"), decimals
        ),
    )
