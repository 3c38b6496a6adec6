"""Pyth Network (Hermes) USD price oracle."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)


def normalize_feed_id(feed_id: str) -> str:
    """Hermes returns feed ids without the 0x prefix; config may carry one."""
    return feed_id.lower().removeprefix("0x")


def parse_price_updates(
    parsed: list[dict[str, Any]], feeds: dict[str, str]
) -> dict[str, float]:
    """Map Hermes ``parsed`` price updates back onto configured symbols.

    Several symbols may share one feed (e.g. USDC and USDbC).
    """
    symbols_by_feed: dict[str, list[str]] = {}
    for symbol, feed_id in feeds.items():
        symbols_by_feed.setdefault(normalize_feed_id(feed_id), []).append(symbol)

    prices: dict[str, float] = {}
    for item in parsed:
        price_data = item.get("price") or {}
        mantissa = int(price_data.get("price", 0))
        expo = int(price_data.get("expo", 0))
        if mantissa <= 0:
            continue
        for symbol in symbols_by_feed.get(normalize_feed_id(item.get("id", "")), []):
            prices[symbol] = mantissa * (10**expo)
    return prices


class PythOracle:
    """USD prices for configured token symbols from Pyth Network."""

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current USD prices.

        Args:
            symbols: Restrict the request to these symbols. None fetches every
                configured feed.

        Returns a possibly partial mapping; symbols without a feed or a valid
        price are absent rather than zero.
        """
        feeds = self.price_feeds
        if symbols is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in symbols}

        feed_ids = sorted({normalize_feed_id(fid) for fid in feeds.values()})
        if not feed_ids:
            return {}

        params = [("ids[]", fid) for fid in feed_ids]
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.hermes_url, params=params) as response:
                    if response.status != 200:
                        logger.error("Error fetching prices from Pyth: HTTP %s", response.status)
                        return {}
                    data = await response.json()
        except (aiohttp.ClientError, OSError, TimeoutError) as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        prices = parse_price_updates(data.get("parsed") or [], feeds)
        for symbol, price in sorted(prices.items()):
            logger.debug("Pyth %s: $%.4f", symbol, price)
        return prices
