"""Position reading and portfolio aggregation."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence

from ..errors import UnknownMarketError
from ..interfaces import MarketSource
from ..models import (
    HEALTHY_SENTINEL,
    MarketSnapshot,
    PortfolioStatus,
    Position,
    PositionMetrics,
    ProtocolName,
    RawPosition,
)
from ..units import position_health_factor, to_assets
from .market_cache import MarketSnapshotCache

logger = logging.getLogger(__name__)

# (loan_token, token-native amount) -> USD
UsdValuer = Callable[[str, int], float]


def resolve_amounts(raw: RawPosition, market: MarketSnapshot) -> tuple[int, int]:
    """Supply and borrow in assets, converting shares with the market's accrual state."""
    supply = raw.supply_assets
    borrow = raw.borrow_assets
    if raw.supply_shares > 0 and market.total_supply_shares > 0:
        supply = to_assets(raw.supply_shares, market.total_supply, market.total_supply_shares)
    if raw.borrow_shares > 0 and market.total_borrow_shares > 0:
        borrow = to_assets(raw.borrow_shares, market.total_borrow, market.total_borrow_shares)
    return supply, borrow


def build_position(raw: RawPosition, market: MarketSnapshot) -> Position | None:
    """Position for one market, or None when both balances are zero."""
    supply, borrow = resolve_amounts(raw, market)
    if supply <= 0 and borrow <= 0:
        return None
    return Position(
        protocol=market.protocol,
        market_id=market.market_id,
        supply_amount=supply,
        borrow_amount=borrow,
        health_factor=position_health_factor(supply, borrow),
        metrics=PositionMetrics(
            supply_apy=market.supply_apy,
            borrow_apy=market.borrow_apy,
            rewards_apy=market.rewards_apy,
        ),
        loan_token=market.loan_token,
        market_name=market.name,
    )


def build_portfolio(
    positions: Sequence[Position], usd_value: UsdValuer | None = None
) -> PortfolioStatus:
    """Aggregate positions; the portfolio is only as healthy as its weakest position.

    Without a valuer the USD totals are zero and the net APY is weighted by
    raw supply amounts.
    """
    if not positions:
        return PortfolioStatus(
            total_supply_usd=0.0,
            total_borrow_usd=0.0,
            health_factor=HEALTHY_SENTINEL,
            net_apy=0.0,
        )

    total_supply_usd = 0.0
    total_borrow_usd = 0.0
    weighted_apy = 0.0
    total_weight = 0.0
    for position in positions:
        if usd_value is not None:
            supply_usd = usd_value(position.loan_token, position.supply_amount)
            total_supply_usd += supply_usd
            total_borrow_usd += usd_value(position.loan_token, position.borrow_amount)
            weight = supply_usd
        else:
            weight = float(position.supply_amount)
        weighted_apy += weight * position.metrics.supply_apy
        total_weight += weight

    return PortfolioStatus(
        total_supply_usd=total_supply_usd,
        total_borrow_usd=total_borrow_usd,
        health_factor=min(p.health_factor for p in positions),
        net_apy=weighted_apy / total_weight if total_weight > 0 else 0.0,
        positions=tuple(positions),
    )


class PositionReader:
    """Read a user's positions fresh from the protocol collaborators."""

    def __init__(
        self, sources: Mapping[ProtocolName, MarketSource], cache: MarketSnapshotCache
    ) -> None:
        self._sources = dict(sources)
        self._cache = cache

    async def _read_one(
        self, source: MarketSource, user_address: str, market_id: str
    ) -> Position | None:
        market = await self._cache.get(source.protocol, market_id)
        raw = await source.fetch_position(user_address, market_id)
        return build_position(raw, market)

    async def check_position(
        self, user_address: str, protocol: ProtocolName, market_id: str | None = None
    ) -> list[Position]:
        """Open positions of ``user_address`` in one protocol.

        With ``market_id`` the read is restricted to that market and any
        failure propagates. Without it every configured market is read and
        per-market failures are logged and skipped.

        Raises:
            UnknownMarketError: protocol or market is not configured.
        """
        source = self._sources.get(protocol)
        if source is None:
            raise UnknownMarketError(protocol.value, market_id or "*")

        if market_id is not None:
            position = await self._read_one(source, user_address, market_id)
            return [position] if position else []

        positions: list[Position] = []
        for mid in source.market_ids():
            try:
                position = await self._read_one(source, user_address, mid)
            except Exception as e:
                logger.warning(
                    "Skipping %s position in %s for %s: %s", protocol.value, mid, user_address, e
                )
                continue
            if position is not None:
                positions.append(position)
        return positions
