"""
REST snapshot client for market, dominance, exchange and candle data.

Handles:
1. Full-market snapshot (CoinGecko /coins/markets, paged)
2. Global dominance statistics (CoinGecko /global)
3. Tradable pair list (Binance /exchangeInfo)
4. Candle closes for RSI input (Binance /klines)

Every call is independent and returns None on failure instead of raising.
A caller keeps its previous data and retries on its next cycle.

Performance notes:
- Uses orjson for JSON parsing
- One shared aiohttp session; concurrency bounded by its connector
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from ..config import BINANCE_REST_BASE, COINGECKO_BASE
from ..types import Asset, GlobalStats

logger = logging.getLogger(__name__)

# Fetch failures that mean "no data this cycle"
FETCH_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

# Payloads that decode but do not have the expected shape
PAYLOAD_ERRORS = (orjson.JSONDecodeError, KeyError, IndexError, TypeError, ValueError)

KLINE_CLOSE_INDEX = 4
DEFAULT_KLINE_LIMIT = 300


class SnapshotClient:
    """
    Async client for the snapshot and candle providers.

    Usage:
        async with aiohttp.ClientSession() as session:
            client = SnapshotClient(session)
            assets = await client.fetch_markets()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        coingecko_base: str = COINGECKO_BASE,
        binance_base: str = BINANCE_REST_BASE,
        kline_limit: int = DEFAULT_KLINE_LIMIT,
    ) -> None:
        self.session = session
        self.coingecko_base = coingecko_base.rstrip("/")
        self.binance_base = binance_base.rstrip("/")
        self.kline_limit = kline_limit

    async def _get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        async with self.session.get(url, params=params) as resp:
            resp.raise_for_status()
            data = await resp.read()
            return orjson.loads(data)

    async def fetch_markets(self, pages: int = 1, per_page: int = 250) -> Optional[list[Asset]]:
        """Top assets by market cap, descending. None if any page fails."""
        url = f"{self.coingecko_base}/coins/markets"
        assets: list[Asset] = []

        for page in range(1, pages + 1):
            params = {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": per_page,
                "page": page,
                "sparkline": "false",
            }
            try:
                records = await self._get_json(url, params)
                assets.extend(Asset.from_market(record) for record in records)
            except aiohttp.ClientResponseError as e:
                logger.warning("Market snapshot page %d failed: HTTP %s %s", page, e.status, e.message)
                return None
            except FETCH_ERRORS as e:
                logger.warning("Market snapshot page %d failed: %r", page, e)
                return None
            except PAYLOAD_ERRORS as e:
                logger.warning("Malformed market snapshot page %d: %r", page, e)
                return None

        logger.debug("Fetched %d market records", len(assets))
        return assets

    async def fetch_global_stats(self) -> Optional[GlobalStats]:
        """Dominance percentages, or None on failure."""
        url = f"{self.coingecko_base}/global"
        try:
            payload = await self._get_json(url)
            percentages = payload["data"]["market_cap_percentage"]
            return GlobalStats({str(k).lower(): float(v) for k, v in percentages.items()})
        except aiohttp.ClientResponseError as e:
            logger.warning("Global stats fetch failed: HTTP %s %s", e.status, e.message)
        except FETCH_ERRORS as e:
            logger.warning("Global stats fetch failed: %r", e)
        except (*PAYLOAD_ERRORS, AttributeError) as e:
            logger.warning("Malformed global stats response: %r", e)
        return None

    async def fetch_tradable_pairs(self) -> Optional[set[str]]:
        """Exchange symbols with status TRADING, or None on failure."""
        url = f"{self.binance_base}/exchangeInfo"
        try:
            payload = await self._get_json(url)
            pairs = {s["symbol"] for s in payload["symbols"] if s.get("status") == "TRADING"}
        except aiohttp.ClientResponseError as e:
            logger.warning("Exchange info fetch failed: HTTP %s %s", e.status, e.message)
            return None
        except FETCH_ERRORS as e:
            logger.warning("Exchange info fetch failed: %r", e)
            return None
        except (*PAYLOAD_ERRORS, AttributeError) as e:
            logger.warning("Malformed exchange info response: %r", e)
            return None

        logger.debug("Exchange lists %d trading pairs", len(pairs))
        return pairs

    async def fetch_closes(self, pair: str, interval: str, limit: Optional[int] = None) -> Optional[list[float]]:
        """
        Closing prices (oldest first) of the most recent candles.

        An unlisted pair is expected for many assets and only logged at
        debug level; service and network faults are logged as warnings.
        """
        url = f"{self.binance_base}/klines"
        params = {"symbol": pair, "interval": interval, "limit": limit or self.kline_limit}
        try:
            rows = await self._get_json(url, params)
            if not isinstance(rows, list):
                logger.debug("Unexpected klines payload for %s %s", pair, interval)
                return None
            return [float(row[KLINE_CLOSE_INDEX]) for row in rows]
        except aiohttp.ClientResponseError as e:
            if e.status == 400:
                logger.debug("No %s candles for %s (pair not listed)", interval, pair)
            else:
                logger.warning("Klines %s %s failed: HTTP %s %s", pair, interval, e.status, e.message)
        except FETCH_ERRORS as e:
            logger.warning("Klines %s %s failed: %r", pair, interval, e)
        except PAYLOAD_ERRORS as e:
            logger.warning("Malformed klines for %s %s: %r", pair, interval, e)
        return None
