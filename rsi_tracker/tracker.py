"""
Tracker orchestration.

Wires the store, command executor, snapshot client, stream reconciler and
refresh scheduler together, and owns their task lifetimes:

1. Start the command executor
2. Fetch tradable pairs, markets and global stats concurrently
3. Select the universe and publish it (retry until it succeeds)
4. Start the stream supervisor and the refresh timers
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

import aiohttp

from .config import Settings
from .datafeed.snapshot_client import SnapshotClient
from .datafeed.stream import StreamReconciler
from .engine.scheduler import RefreshScheduler
from .engine.store import CommandExecutor, MarketStore, ReplaceGlobalStats, ReplaceUniverse
from .engine.universe import DEFAULT_POLICY, UniversePolicy, select_universe

logger = logging.getLogger(__name__)


class Tracker:
    """
    One tracking session.

    Usage:
        async with aiohttp.ClientSession() as session:
            tracker = Tracker(Settings(), session)
            await tracker.start()
            ...
            await tracker.stop()
    """

    def __init__(
        self,
        settings: Settings,
        session: aiohttp.ClientSession,
        policy: Optional[UniversePolicy] = None,
        client: Optional[SnapshotClient] = None,
    ) -> None:
        self.settings = settings
        self.policy = policy or replace(DEFAULT_POLICY, limit=settings.universe_size)

        self.store = MarketStore()
        self.executor = CommandExecutor(self.store)
        self.client = client or SnapshotClient(
            session,
            coingecko_base=settings.coingecko_base,
            binance_base=settings.binance_rest_base,
            kline_limit=settings.kline_limit,
        )
        self.stream = StreamReconciler(
            session,
            self.store,
            self.executor.submit,
            ws_base=settings.binance_ws_base,
            reconnect_delay=settings.reconnect_delay_sec,
        )
        self.scheduler = RefreshScheduler(
            self.store,
            self.client,
            self.executor.submit,
            rsi_interval=settings.rsi_interval_sec,
            stats_interval=settings.stats_interval_sec,
            market_interval=settings.market_interval_sec,
            rsi_length=settings.rsi_length,
            markets_pages=settings.markets_pages,
            markets_per_page=settings.markets_per_page,
        )

        self._executor_task: Optional[asyncio.Task] = None
        self._stream_task: Optional[asyncio.Task] = None

    async def _select(self) -> bool:
        pairs, markets = await asyncio.gather(
            self.client.fetch_tradable_pairs(),
            self.client.fetch_markets(self.settings.markets_pages, self.settings.markets_per_page),
        )
        if pairs is None or markets is None:
            logger.error("Universe selection failed: %s unavailable",
                         "exchange info" if pairs is None else "market snapshot")
            return False

        selected = select_universe(markets, pairs, self.policy)
        self.executor.submit(ReplaceUniverse(tuple(selected)))
        return True

    async def initialize(self) -> bool:
        """Initial snapshot + universe. Returns False if the universe could not be built."""
        selected, stats = await asyncio.gather(
            self._select(),
            self.client.fetch_global_stats(),
        )
        if stats is not None:
            self.executor.submit(ReplaceGlobalStats(stats))
        await self.executor.drain()
        return selected

    async def reselect_universe(self) -> bool:
        """Re-run selection, swap the universe and resubscribe the stream."""
        if not await self._select():
            return False
        await self.executor.drain()
        await self.stream.resubscribe()
        return True

    async def start(self) -> None:
        """Bring the session up. Retries initial selection until it succeeds."""
        if self._executor_task is None:
            self._executor_task = asyncio.create_task(self.executor.run(), name="store-executor")

        while not await self.initialize():
            logger.info("Retrying universe selection in %.0fs", self.settings.reconnect_delay_sec)
            await asyncio.sleep(self.settings.reconnect_delay_sec)

        self._stream_task = asyncio.create_task(self.stream.run(), name="trade-stream")
        self.scheduler.start()
        logger.info("Tracking %d assets", len(self.store.universe.asset_ids))

    async def stop(self) -> None:
        """Cancel timers, the stream and the executor together."""
        await self.scheduler.stop()

        self.stream.stop()
        for task in (self._stream_task, self._executor_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._stream_task = None
        self._executor_task = None
        self.executor.stop()

    def stream_status(self) -> str:
        return f"{self.stream.state.value} ({self.stream.tick_count} ticks)"

    def summary_line(self) -> str:
        """One-line status for headless mode."""
        view = self.store.view()
        stats = view.global_stats
        btc = f"{stats.btc:.2f}%" if stats and stats.btc is not None else "-"
        usdt = f"{stats.usdt:.2f}%" if stats and stats.usdt is not None else "-"
        with_rsi = sum(1 for a in view.assets.values() if a.rsi_1h is not None)
        return (f"assets={len(view.order)} rsi_1h={with_rsi} btc.d={btc} usdt.d={usdt} "
                f"stream={self.stream_status()}")
