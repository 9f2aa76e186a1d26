#!/usr/bin/env python3
"""
Micro-benchmark for RSI Tracker hot paths.

Tests:
1. RSI computation on 300-candle series (one full cycle = 600 calls)
2. Stream message handling into a 100-asset store
3. View projection (sort) over the full universe

Usage:
    python -m rsi_tracker.benchmark
"""

from __future__ import annotations

import random
import time
from statistics import mean, stdev

import orjson

from .datafeed.stream import StreamReconciler
from .engine.rsi import compute_rsi
from .engine.store import MarketStore, ReplaceUniverse
from .types import Asset, SortSpec
from .view import project_order


def generate_mock_closes(base_price: float = 100.0, length: int = 300) -> list[float]:
    """Random-walk close series."""
    closes = [base_price]
    for _ in range(length - 1):
        closes.append(max(0.01, closes[-1] * (1 + random.gauss(0, 0.01))))
    return closes


def generate_mock_universe(size: int = 100) -> list[Asset]:
    return [
        Asset(
            id=f"coin-{i}",
            symbol=f"c{i}",
            name=f"Coin {i}",
            current_price=random.uniform(0.1, 1000),
            market_cap=random.uniform(1e8, 1e12),
            total_volume=random.uniform(1e6, 1e10),
            price_change_percentage_24h=random.uniform(-10, 10),
            exchange_pair=f"C{i}USDT",
        )
        for i in range(size)
    ]


def generate_mock_trade(pair: str, price: float) -> bytes:
    return orjson.dumps({
        "stream": f"{pair.lower()}@trade",
        "data": {"e": "trade", "s": pair, "p": f"{price:.8f}", "q": "1.0"},
    })


def benchmark_rsi(iterations: int = 600) -> None:
    """Benchmark one full recompute cycle worth of RSI calls."""
    print("\n=== RSI Computation Benchmark ===")

    series = [generate_mock_closes() for _ in range(iterations)]

    # Warm up
    for s in series[:10]:
        compute_rsi(s)

    start = time.perf_counter()
    for s in series:
        compute_rsi(s)
    elapsed = time.perf_counter() - start

    print(f"  Series computed: {iterations:,} x 300 closes")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Per series: {elapsed/iterations*1_000_000:.1f}µs")


def benchmark_ticks(iterations: int = 100000) -> None:
    """Benchmark stream message handling applied straight to the store."""
    print("\n=== Stream Tick Benchmark ===")

    store = MarketStore()
    universe = generate_mock_universe()
    store.apply(ReplaceUniverse(tuple(universe)))

    stream = StreamReconciler(session=None, store=store, submit=store.apply)  # type: ignore[arg-type]
    stream.refresh_pairs()

    messages = [
        generate_mock_trade(a.exchange_pair or "", random.uniform(0.1, 1000))
        for a in random.choices(universe, k=iterations)
    ]

    start = time.perf_counter()
    for m in messages:
        stream.handle_message(m)
    elapsed = time.perf_counter() - start

    print(f"  Ticks handled: {iterations:,}")
    print(f"  Time: {elapsed*1000:.1f}ms")
    print(f"  Rate: {iterations/elapsed:,.0f} ticks/sec")
    print(f"  Per tick: {elapsed/iterations*1_000_000:.2f}µs")


def benchmark_projection(iterations: int = 1000) -> None:
    """Benchmark sorting the universe for display."""
    print("\n=== View Projection Benchmark ===")

    store = MarketStore()
    store.apply(ReplaceUniverse(tuple(generate_mock_universe())))
    view = store.view()
    sort = SortSpec("price_change_percentage_24h", "desc")

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        project_order(view, sort)
        times.append(time.perf_counter() - start)

    avg_time = mean(times) * 1000
    std_time = stdev(times) * 1000

    print(f"  Iterations: {iterations}")
    print(f"  Avg time: {avg_time:.3f}ms")
    print(f"  Std dev: {std_time:.3f}ms")
    print(f"  Max FPS possible: {1000/avg_time:,.0f}")


def main() -> None:
    """Run all benchmarks."""
    print("=" * 60)
    print("RSI Tracker Performance Benchmark")
    print("=" * 60)

    benchmark_rsi()
    benchmark_ticks()
    benchmark_projection()

    print("\n" + "=" * 60)
    print("Benchmark complete.")
    print("=" * 60)


if __name__ == "__main__":
    main()
