"""Minimal GraphQL-over-HTTP helper shared by the protocol adapters."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..errors import MarketDataError

logger = logging.getLogger(__name__)


async def post_graphql(
    url: str,
    query: str,
    variables: dict[str, Any],
    timeout: float = 30,
) -> dict[str, Any]:
    """POST a GraphQL query and return its ``data`` object.

    Raises:
        MarketDataError: on a transport error, a non-200 status or a GraphQL
            ``errors`` payload.
    """
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)

    try:
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                url,
                json={"query": query, "variables": variables},
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                if response.status != 200:
                    raise MarketDataError(f"GraphQL HTTP {response.status} from {url}")
                body = await response.json()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("GraphQL request to %s failed: %s", url, e)
        raise MarketDataError(f"GraphQL request to {url} failed: {e}") from e

    errors = body.get("errors")
    if errors:
        message = "; ".join(str(e.get("message", e)) for e in errors)
        raise MarketDataError(f"GraphQL error from {url}: {message}")

    return body.get("data") or {}
