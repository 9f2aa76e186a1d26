import asyncio

import aiohttp
from conftest import FakeMarketClient, make_asset

from rsi_tracker.engine.scheduler import RefreshScheduler
from rsi_tracker.engine.store import ApplyRsiBatch, ReplaceGlobalStats
from rsi_tracker.types import TIMEFRAMES, GlobalStats

RALLY = [float(p) for p in range(1, 60)]
CHOP = [100.0, 102.0, 101.0, 103.0, 100.5, 104.0, 102.0, 101.0, 99.0, 100.0,
        98.0, 101.0, 102.5, 101.5, 103.0, 102.0, 104.5, 103.0, 105.0, 104.0]


def make_scheduler(store, client, submitted):
    def submit(command):
        submitted.append(command)
        store.apply(command)

    return RefreshScheduler(store, client, submit, rsi_interval=3600, stats_interval=3600)


def test_partial_timeframes_applied_as_one_batch(tracked_store):
    closes = {
        ("BTCUSDT", "5m"): RALLY,
        ("BTCUSDT", "15m"): CHOP,
        ("BTCUSDT", "1h"): RALLY,
        ("BTCUSDT", "4h"): CHOP,
        ("BTCUSDT", "1d"): None,       # pair not listed on this interval
        ("BTCUSDT", "1w"): RALLY[:5],  # too little history
    }
    submitted = []
    scheduler = make_scheduler(tracked_store, FakeMarketClient(closes=closes), submitted)
    version = tracked_store.version

    asyncio.run(scheduler.recompute_asset(tracked_store.get("bitcoin")))

    assert len(submitted) == 1
    assert isinstance(submitted[0], ApplyRsiBatch)
    assert tracked_store.version == version + 1

    btc = tracked_store.get("bitcoin")
    assert btc.rsi_5m == 100.0
    assert btc.rsi_1h == 100.0
    assert 0.0 < btc.rsi_15m < 100.0
    assert btc.rsi_4h == btc.rsi_15m
    assert btc.rsi_1d is None
    assert btc.rsi_1w is None


def test_fetches_all_six_timeframes(tracked_store):
    client = FakeMarketClient()
    scheduler = make_scheduler(tracked_store, client, [])

    asyncio.run(scheduler.recompute_asset(tracked_store.get("ethereum")))

    assert sorted(client.closes_calls) == sorted(("ETHUSDT", tf) for tf in TIMEFRAMES)


def test_failing_timeframe_becomes_unavailable(tracked_store):
    closes = {("ETHUSDT", tf): RALLY for tf in TIMEFRAMES}
    closes[("ETHUSDT", "4h")] = aiohttp.ClientConnectionError("reset")
    scheduler = make_scheduler(tracked_store, FakeMarketClient(closes=closes), [])

    asyncio.run(scheduler.recompute_asset(tracked_store.get("ethereum")))

    eth = tracked_store.get("ethereum")
    assert eth.rsi_4h is None
    assert eth.rsi_1w == 100.0


def test_cycle_skips_assets_without_pair(tracked_store):
    closes = {(pair, tf): RALLY for pair in ("BTCUSDT", "ETHUSDT") for tf in TIMEFRAMES}
    submitted = []
    scheduler = make_scheduler(tracked_store, FakeMarketClient(closes=closes), submitted)

    count = asyncio.run(scheduler.recompute_indicators())

    assert count == 2
    assert {c.asset_id for c in submitted} == {"bitcoin", "ethereum"}
    monero = tracked_store.get("monero")
    assert all(v is None for v in monero.rsi_readings().values())
    assert scheduler.cycle_count == 1


def test_late_batch_overwrites_per_field(tracked_store):
    closes = {("BTCUSDT", tf): RALLY for tf in TIMEFRAMES}
    scheduler = make_scheduler(tracked_store, FakeMarketClient(closes=closes), [])
    tracked_store.apply(ApplyRsiBatch("bitcoin", {tf: 20.0 for tf in TIMEFRAMES}))

    asyncio.run(scheduler.recompute_asset(tracked_store.get("bitcoin")))

    assert tracked_store.get("bitcoin").rsi_readings() == {tf: 100.0 for tf in TIMEFRAMES}


def test_stats_refresh_replaces_value(tracked_store):
    client = FakeMarketClient(stats=GlobalStats({"btc": 57.2, "usdt": 4.4}))
    submitted = []
    scheduler = make_scheduler(tracked_store, client, submitted)

    assert asyncio.run(scheduler.refresh_global_stats()) is True
    assert tracked_store.global_stats.btc == 57.2
    assert isinstance(submitted[0], ReplaceGlobalStats)


def test_stats_refresh_failure_keeps_previous_value(tracked_store):
    tracked_store.apply(ReplaceGlobalStats(GlobalStats({"btc": 55.0, "usdt": 4.0})))
    submitted = []
    scheduler = make_scheduler(tracked_store, FakeMarketClient(stats=None), submitted)

    assert asyncio.run(scheduler.refresh_global_stats()) is False

    assert submitted == []
    assert tracked_store.global_stats.btc == 55.0
    assert tracked_store.global_stats.usdt == 4.0


def test_market_refresh_only_touches_tracked_assets(tracked_store):
    markets = [
        make_asset("btc", id="bitcoin", current_price=58000.0, market_cap=1.0e12),
        make_asset("doge", id="dogecoin"),
    ]
    submitted = []
    scheduler = make_scheduler(tracked_store, FakeMarketClient(markets=markets), submitted)

    assert asyncio.run(scheduler.refresh_market_fields()) is True

    assert [a.id for a in submitted[0].assets] == ["bitcoin"]
    assert tracked_store.get("bitcoin").market_cap == 1.0e12
    assert tracked_store.get("dogecoin") is None


def test_start_runs_recompute_immediately_and_stop_cancels(tracked_store):
    closes = {(pair, tf): RALLY for pair in ("BTCUSDT", "ETHUSDT") for tf in TIMEFRAMES}
    scheduler = make_scheduler(tracked_store, FakeMarketClient(closes=closes), [])

    async def scenario():
        scheduler.start()
        for _ in range(50):
            await asyncio.sleep(0)
        running = scheduler.running
        await scheduler.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert scheduler.running is False
    assert scheduler.cycle_count == 1
    assert tracked_store.get("bitcoin").rsi_5m == 100.0


def test_timer_survives_job_errors(tracked_store):
    scheduler = make_scheduler(tracked_store, FakeMarketClient(), [])
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    async def scenario():
        task = asyncio.create_task(scheduler._every(0, flaky, "flaky", run_immediately=True))
        for _ in range(20):
            await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())
    assert len(calls) > 1
