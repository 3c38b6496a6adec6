"""Market snapshot cache — TTL reads with replace-on-refresh semantics."""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping

from ..config import CacheConfig
from ..errors import MarketDataError, UnknownMarketError
from ..interfaces import MarketSource
from ..models import MarketSnapshot, ProtocolAnalysis, ProtocolName, RawMarket
from ..risk import classify
from ..units import wad_to_percentage

logger = logging.getLogger(__name__)

CacheKey = tuple[ProtocolName, str]


def build_snapshot(protocol: ProtocolName, raw: RawMarket, fetched_at: float) -> MarketSnapshot:
    """Convert collaborator units to percentages and attach derived risk fields."""
    utilization = wad_to_percentage(raw.utilization)
    risk = classify(utilization, raw.total_supply_assets, raw.total_borrow_assets)
    return MarketSnapshot(
        protocol=protocol,
        market_id=raw.market_id,
        supply_apy=wad_to_percentage(raw.supply_apy),
        borrow_apy=wad_to_percentage(raw.borrow_apy),
        utilization=utilization,
        total_supply=raw.total_supply_assets,
        total_borrow=raw.total_borrow_assets,
        liquidity=raw.liquidity,
        is_healthy=risk.is_healthy,
        utilization_risk=risk.utilization_risk,
        rewards_apy=wad_to_percentage(raw.rewards_apy),
        total_supply_shares=raw.total_supply_shares,
        total_borrow_shares=raw.total_borrow_shares,
        collateral_token=raw.collateral_token,
        loan_token=raw.loan_token,
        lltv=raw.lltv,
        name=raw.name,
        fetched_at=fetched_at,
    )


class MarketSnapshotCache:
    """Shared per-market snapshot store.

    Entries are whole immutable snapshots; a refresh swaps the entry, so a
    reader sees either the old or the new snapshot. Concurrent misses for the
    same market share one fetch.
    """

    def __init__(
        self,
        sources: Mapping[ProtocolName, MarketSource],
        config: CacheConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sources = dict(sources)
        self._ttl = config.ttl_seconds
        self._max_retries = max(1, config.max_retries)
        self._retry_delay = config.retry_delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[CacheKey, MarketSnapshot] = {}
        self._locks: dict[CacheKey, asyncio.Lock] = {}

    @staticmethod
    def _key(protocol: ProtocolName, market_id: str) -> CacheKey:
        return protocol, market_id.lower()

    def _source(self, protocol: ProtocolName) -> MarketSource:
        source = self._sources.get(protocol)
        if source is None:
            raise UnknownMarketError(protocol.value, "*")
        return source

    def _is_fresh(self, snapshot: MarketSnapshot) -> bool:
        return self._clock() - snapshot.fetched_at < self._ttl

    def peek(self, protocol: ProtocolName, market_id: str) -> MarketSnapshot | None:
        """Return the cached entry, fresh or stale, without fetching."""
        return self._entries.get(self._key(protocol, market_id))

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, protocol: ProtocolName, market_id: str) -> MarketSnapshot:
        """Cached snapshot if younger than the TTL, otherwise a fresh fetch.

        Raises:
            UnknownMarketError: market is not configured.
            MarketDataError: every fetch attempt failed.
        """
        key = self._key(protocol, market_id)
        cached = self._entries.get(key)
        if cached is not None and self._is_fresh(cached):
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another waiter may have refreshed while we queued.
            cached = self._entries.get(key)
            if cached is not None and self._is_fresh(cached):
                return cached

            raw = await self._fetch_with_retry(protocol, market_id)
            snapshot = build_snapshot(protocol, raw, self._clock())
            self._entries[key] = snapshot
            logger.debug(
                "Cached %s %s: supply %.2f%% util %.2f%% (%s)",
                protocol.value,
                snapshot.name or market_id,
                snapshot.supply_apy,
                snapshot.utilization,
                snapshot.utilization_risk.value,
            )
            return snapshot

    async def _fetch_with_retry(self, protocol: ProtocolName, market_id: str) -> RawMarket:
        source = self._source(protocol)
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                return await source.fetch_market(market_id)
            except UnknownMarketError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "Fetch %s %s failed (attempt %d/%d): %s",
                    protocol.value, market_id, attempt, self._max_retries, e,
                )
                if attempt < self._max_retries:
                    await self._sleep(self._retry_delay)
        raise MarketDataError(
            f"Could not fetch {protocol.value} market {market_id}: {last_error}"
        ) from last_error

    async def get_all(self, protocol: ProtocolName) -> ProtocolAnalysis:
        """Snapshots for every configured market; failed markets are omitted."""
        try:
            source = self._source(protocol)
        except UnknownMarketError:
            logger.error("No market source registered for %s", protocol.value)
            return ProtocolAnalysis(protocol=protocol, markets=())

        market_ids = source.market_ids()
        results = await asyncio.gather(
            *(self.get(protocol, market_id) for market_id in market_ids),
            return_exceptions=True,
        )

        markets: list[MarketSnapshot] = []
        failed: list[str] = []
        for market_id, result in zip(market_ids, results):
            if isinstance(result, BaseException):
                logger.warning("Skipping %s market %s: %s", protocol.value, market_id, result)
                failed.append(market_id)
            else:
                markets.append(result)

        if market_ids and not markets:
            logger.error("All %d %s markets failed to load", len(market_ids), protocol.value)

        return ProtocolAnalysis(
            protocol=protocol, markets=tuple(markets), failed_market_ids=tuple(failed)
        )
