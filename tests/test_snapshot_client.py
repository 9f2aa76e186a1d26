import asyncio

import aiohttp
import pytest
from conftest import FakeHTTPSession, FakeResponse

from rsi_tracker.datafeed.snapshot_client import SnapshotClient

MARKET_RECORDS = [
    {
        "id": "bitcoin", "symbol": "btc", "name": "Bitcoin", "image": "https://img/btc.png",
        "current_price": 67000.5, "market_cap": 1.32e12, "total_volume": 2.1e10,
        "price_change_percentage_24h": -1.25,
    },
    {
        "id": "ethereum", "symbol": "eth", "name": "Ethereum", "image": "https://img/eth.png",
        "current_price": 3200, "market_cap": 3.8e11, "total_volume": 1.2e10,
        "price_change_percentage_24h": None,
    },
]


def kline(close):
    # open time, open, high, low, close, volume, close time, ...
    return [1700000000000, "1.0", "2.0", "0.5", str(close), "100.0", 1700000299999,
            "150.0", 10, "50.0", "75.0", "0"]


def make_client(routes, **kwargs):
    session = FakeHTTPSession(routes)
    return SnapshotClient(session, coingecko_base="https://cg.test/api/v3",
                          binance_base="https://bn.test/api/v3", **kwargs), session


# =============================================================================
# MARKETS
# =============================================================================

def test_fetch_markets_parses_records():
    client, session = make_client({"markets": FakeResponse(payload=MARKET_RECORDS)})

    assets = asyncio.run(client.fetch_markets())

    assert [a.id for a in assets] == ["bitcoin", "ethereum"]
    btc, eth = assets
    assert btc.symbol == "btc"
    assert btc.current_price == 67000.5
    assert btc.price_change_percentage_24h == -1.25
    assert btc.exchange_pair is None
    assert eth.current_price == 3200.0
    assert eth.price_change_percentage_24h is None

    url, params = session.calls[0]
    assert url == "https://cg.test/api/v3/coins/markets"
    assert params["order"] == "market_cap_desc"
    assert params["per_page"] == 250
    assert params["page"] == 1


def test_fetch_markets_pages_in_order():
    client, session = make_client({"markets": [
        FakeResponse(payload=MARKET_RECORDS[:1]),
        FakeResponse(payload=MARKET_RECORDS[1:]),
    ]})

    assets = asyncio.run(client.fetch_markets(pages=2, per_page=1))

    assert [a.id for a in assets] == ["bitcoin", "ethereum"]
    assert [params["page"] for _, params in session.calls] == [1, 2]


def test_fetch_markets_failed_page_returns_none():
    client, _ = make_client({"markets": [
        FakeResponse(payload=MARKET_RECORDS),
        FakeResponse(status=429, payload={"error": "rate limited"}),
    ]})
    assert asyncio.run(client.fetch_markets(pages=2)) is None


def test_fetch_markets_malformed_record_returns_none():
    client, _ = make_client({"markets": FakeResponse(payload=[{"symbol": "btc"}])})
    assert asyncio.run(client.fetch_markets()) is None


# =============================================================================
# GLOBAL STATS
# =============================================================================

def test_fetch_global_stats():
    payload = {"data": {"market_cap_percentage": {"btc": 57.3, "eth": 11.9, "USDT": 4.6}}}
    client, session = make_client({"global": FakeResponse(payload=payload)})

    stats = asyncio.run(client.fetch_global_stats())

    assert stats.btc == 57.3
    assert stats.usdt == 4.6
    assert session.calls[0][0] == "https://cg.test/api/v3/global"


@pytest.mark.parametrize("response", [
    FakeResponse(status=503, payload={}),
    FakeResponse(payload={"data": {}}),
    FakeResponse(body=b"<html>oops</html>"),
    FakeResponse(error=aiohttp.ClientConnectionError("reset")),
    FakeResponse(error=asyncio.TimeoutError()),
])
def test_fetch_global_stats_failure_returns_none(response):
    client, _ = make_client({"global": response})
    assert asyncio.run(client.fetch_global_stats()) is None


# =============================================================================
# EXCHANGE INFO
# =============================================================================

def test_fetch_tradable_pairs_keeps_trading_only():
    payload = {"symbols": [
        {"symbol": "BTCUSDT", "status": "TRADING"},
        {"symbol": "ETHUSDT", "status": "TRADING"},
        {"symbol": "LUNAUSDT", "status": "BREAK"},
        {"symbol": "ETHBTC", "status": "TRADING"},
    ]}
    client, _ = make_client({"exchangeInfo": FakeResponse(payload=payload)})

    pairs = asyncio.run(client.fetch_tradable_pairs())

    assert pairs == {"BTCUSDT", "ETHUSDT", "ETHBTC"}


def test_fetch_tradable_pairs_failure_returns_none():
    client, _ = make_client({"exchangeInfo": FakeResponse(status=418, payload={})})
    assert asyncio.run(client.fetch_tradable_pairs()) is None


# =============================================================================
# KLINES
# =============================================================================

def test_fetch_closes_reads_close_column():
    rows = [kline(100.0), kline(101.5), kline("99.25")]
    client, session = make_client({"klines": FakeResponse(payload=rows)}, kline_limit=300)

    closes = asyncio.run(client.fetch_closes("BTCUSDT", "1h"))

    assert closes == [100.0, 101.5, 99.25]
    url, params = session.calls[0]
    assert url == "https://bn.test/api/v3/klines"
    assert params == {"symbol": "BTCUSDT", "interval": "1h", "limit": 300}


def test_fetch_closes_explicit_limit():
    client, session = make_client({"klines": FakeResponse(payload=[])})
    assert asyncio.run(client.fetch_closes("BTCUSDT", "1w", limit=50)) == []
    assert session.calls[0][1]["limit"] == 50


def test_unlisted_pair_is_unavailable():
    body = b'{"code": -1121, "msg": "Invalid symbol."}'
    client, _ = make_client({"klines": FakeResponse(status=400, body=body)})
    assert asyncio.run(client.fetch_closes("FOOUSDT", "5m")) is None


@pytest.mark.parametrize("response", [
    FakeResponse(status=500, payload={}),
    FakeResponse(error=aiohttp.ServerDisconnectedError()),
    FakeResponse(payload={"code": -1003}),
    FakeResponse(payload=[[1, 2, 3]]),
    FakeResponse(payload=[kline("not-a-number")]),
])
def test_fetch_closes_failure_returns_none(response):
    client, _ = make_client({"klines": response})
    assert asyncio.run(client.fetch_closes("BTCUSDT", "5m")) is None

