"""
Pytest configuration and shared fakes.

No test touches the network: aiohttp sessions, websockets and the market
data client are replaced by the in-memory fakes below.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Optional

import aiohttp
import orjson
import pytest

from rsi_tracker.engine.store import MarketStore, ReplaceUniverse
from rsi_tracker.types import Asset, GlobalStats


# =============================================================================
# HELPERS
# =============================================================================

def make_asset(symbol: str, **fields: Any) -> Asset:
    """Asset with sensible defaults; id defaults to the lowercase symbol."""
    base = dict(
        id=symbol.lower(),
        symbol=symbol.lower(),
        name=symbol.upper(),
        current_price=1.0,
        market_cap=1e9,
        total_volume=1e7,
        price_change_percentage_24h=0.0,
    )
    base.update(fields)
    return Asset(**base)


def trade_message(pair: str, price: str) -> str:
    return orjson.dumps({
        "stream": f"{pair.lower()}@trade",
        "data": {"e": "trade", "s": pair, "p": price, "q": "0.5"},
    }).decode()


def text_frame(data: str) -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


async def wait_until(predicate: Callable[[], bool], attempts: int = 2000) -> None:
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# =============================================================================
# FAKE HTTP
# =============================================================================

class FakeResponse:
    def __init__(self, status: int = 200, payload: Any = None, body: Optional[bytes] = None,
                 error: Optional[BaseException] = None) -> None:
        self.status = status
        self.body = body if body is not None else orjson.dumps(payload)
        self.error = error

    async def __aenter__(self) -> "FakeResponse":
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise aiohttp.ClientResponseError(None, (), status=self.status, message="error")

    async def read(self) -> bytes:
        return self.body


class FakeHTTPSession:
    """Routes GET requests by the last path segment (markets, global, exchangeInfo, klines)."""

    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, Optional[dict]]] = []

    def get(self, url: str, params: Optional[dict] = None) -> FakeResponse:
        self.calls.append((url, params))
        route = self.routes[url.rsplit("/", 1)[-1]]
        if callable(route):
            route = route(params or {})
        if isinstance(route, list):
            route = route.pop(0)
        return route


# =============================================================================
# FAKE WEBSOCKET
# =============================================================================

class FakeWebSocket:
    """Yields scripted frames, then either ends (server close) or blocks until closed."""

    def __init__(self, frames: list[Any], hold_open: bool = False) -> None:
        self.frames = list(frames)
        self.hold_open = hold_open
        self.closed = False
        self._closed_event = asyncio.Event()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self.frames:
            if self.closed:
                return
            yield frame
        if self.hold_open:
            await self._closed_event.wait()

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()


class FakeWSSession:
    """
    Each ws_connect consumes one script entry: a list of frames (connection
    ends after them) or an exception (connect fails). When the script runs
    out, connections stay open until closed.
    """

    def __init__(self, scripts: Optional[list[Any]] = None) -> None:
        self.scripts = list(scripts or [])
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []

    async def ws_connect(self, url: str, heartbeat: Optional[float] = None) -> FakeWebSocket:
        self.urls.append(url)
        if self.scripts:
            entry = self.scripts.pop(0)
            if isinstance(entry, BaseException):
                raise entry
            ws = FakeWebSocket(entry)
        else:
            ws = FakeWebSocket([], hold_open=True)
        self.sockets.append(ws)
        return ws


# =============================================================================
# FAKE MARKET DATA CLIENT
# =============================================================================

class FakeMarketClient:
    """Stands in for SnapshotClient in scheduler and tracker tests."""

    def __init__(
        self,
        closes: Optional[dict[tuple[str, str], Any]] = None,
        stats: Optional[GlobalStats] = None,
        markets: Optional[list[Asset]] = None,
        pairs: Optional[set[str]] = None,
    ) -> None:
        self.closes = closes or {}
        self.stats = stats
        self.markets = markets
        self.pairs = pairs
        self.closes_calls: list[tuple[str, str]] = []

    async def fetch_closes(self, pair: str, interval: str) -> Optional[list[float]]:
        self.closes_calls.append((pair, interval))
        result = self.closes.get((pair, interval))
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetch_global_stats(self) -> Optional[GlobalStats]:
        return self.stats

    async def fetch_markets(self, pages: int = 1, per_page: int = 250) -> Optional[list[Asset]]:
        return self.markets

    async def fetch_tradable_pairs(self) -> Optional[set[str]]:
        return self.pairs


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def tracked_store() -> MarketStore:
    """Store holding btc, eth (with pairs) and xmr (no pair)."""
    store = MarketStore()
    store.apply(ReplaceUniverse((
        make_asset("btc", id="bitcoin", current_price=60000.0, market_cap=1.2e12, exchange_pair="BTCUSDT"),
        make_asset("eth", id="ethereum", current_price=3000.0, market_cap=4e11, exchange_pair="ETHUSDT"),
        make_asset("xmr", id="monero", current_price=150.0, market_cap=3e9),
    )))
    return store
