"""Unit tests for Pyth oracle — price response parsing and error handling."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from yield_optimizer.config import PythConfig
from yield_optimizer.oracles.pyth import PythOracle, normalize_feed_id, parse_price_updates


@pytest.fixture()
def oracle() -> PythOracle:
    return PythOracle(
        PythConfig(
            hermes_url="https://hermes.example.com/v2/updates/price/latest",
            feeds={"ETH": "0xAAA111", "WETH": "aaa111", "USDC": "ccc333"},
        )
    )


def _make_pyth_response(items: list[dict]) -> dict:
    return {"parsed": items}


def _mock_session(status: int = 200, data: dict | None = None) -> AsyncMock:
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=data or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    mock_session.get = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


class TestNormalizeFeedId:
    def test_strips_prefix_and_lowercases(self) -> None:
        assert normalize_feed_id("0xABC") == "abc"
        assert normalize_feed_id("abc") == "abc"


class TestParsePriceUpdates:
    def test_shared_feed_maps_to_every_symbol(self) -> None:
        prices = parse_price_updates(
            [{"id": "aaa111", "price": {"price": "350000000000", "expo": -8}}],
            {"ETH": "0xaaa111", "WETH": "aaa111"},
        )
        assert prices == {"ETH": pytest.approx(3500.0), "WETH": pytest.approx(3500.0)}

    def test_non_positive_price_is_skipped(self) -> None:
        prices = parse_price_updates(
            [{"id": "ccc333", "price": {"price": "0", "expo": -8}}], {"USDC": "ccc333"}
        )
        assert prices == {}

    def test_unknown_feed_is_ignored(self) -> None:
        prices = parse_price_updates(
            [{"id": "ddd444", "price": {"price": "100", "expo": 0}}], {"USDC": "ccc333"}
        )
        assert prices == {}


class TestPythOracleFetchPrices:
    @pytest.mark.asyncio
    async def test_parses_response_correctly(self, oracle: PythOracle) -> None:
        mock_session = _mock_session(
            data=_make_pyth_response(
                [
                    {"id": "aaa111", "price": {"price": "350000000000", "expo": "-8"}},
                    {"id": "ccc333", "price": {"price": "100000000", "expo": "-8"}},
                ]
            )
        )

        with patch("yield_optimizer.oracles.pyth.aiohttp.ClientSession", return_value=mock_session):
            with patch("yield_optimizer.oracles.pyth.aiohttp.TCPConnector"):
                prices = await oracle.fetch_prices()

        assert prices["ETH"] == pytest.approx(3500.0)
        assert prices["WETH"] == pytest.approx(3500.0)
        assert prices["USDC"] == pytest.approx(1.0)

        # One id per distinct feed, without the 0x prefix.
        params = mock_session.get.call_args.kwargs["params"]
        assert params == [("ids[]", "aaa111"), ("ids[]", "ccc333")]

    @pytest.mark.asyncio
    async def test_handles_http_error(self, oracle: PythOracle) -> None:
        mock_session = _mock_session(status=500)

        with patch("yield_optimizer.oracles.pyth.aiohttp.ClientSession", return_value=mock_session):
            with patch("yield_optimizer.oracles.pyth.aiohttp.TCPConnector"):
                prices = await oracle.fetch_prices()

        assert prices == {}

    @pytest.mark.asyncio
    async def test_handles_network_error(self, oracle: PythOracle) -> None:
        mock_session = _mock_session()
        mock_session.get = MagicMock(side_effect=ConnectionError("timeout"))

        with patch("yield_optimizer.oracles.pyth.aiohttp.ClientSession", return_value=mock_session):
            with patch("yield_optimizer.oracles.pyth.aiohttp.TCPConnector"):
                prices = await oracle.fetch_prices()

        assert prices == {}

    @pytest.mark.asyncio
    async def test_symbol_filter(self, oracle: PythOracle) -> None:
        mock_session = _mock_session(
            data=_make_pyth_response(
                [{"id": "ccc333", "price": {"price": "100000000", "expo": "-8"}}]
            )
        )

        with patch("yield_optimizer.oracles.pyth.aiohttp.ClientSession", return_value=mock_session):
            with patch("yield_optimizer.oracles.pyth.aiohttp.TCPConnector"):
                prices = await oracle.fetch_prices(symbols=["USDC"])

        assert prices == {"USDC": pytest.approx(1.0)}
        assert mock_session.get.call_args.kwargs["params"] == [("ids[]", "ccc333")]

    @pytest.mark.asyncio
    async def test_empty_feeds_returns_empty(self) -> None:
        oracle = PythOracle(PythConfig(hermes_url="https://x.com", feeds={}))
        prices = await oracle.fetch_prices()
        assert prices == {}
