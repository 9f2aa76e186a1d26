"""
Recurring refresh jobs.

- Indicator recompute (default every 5 min): six concurrent candle fetches
  per tracked asset, one ApplyRsiBatch per asset
- Global stats refresh (default every 60 s): ReplaceGlobalStats, or keep
  the previous value if the fetch fails
- Market fields refresh (optional): ApplyMarketSnapshot for tracked ids

In-flight fetches are never cancelled by a newer cycle. A late batch is
still applied; the newest write per field wins.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from ..types import TIMEFRAMES, Asset, GlobalStats
from .rsi import DEFAULT_RSI_LENGTH, compute_rsi
from .store import (
    ApplyMarketSnapshot,
    ApplyRsiBatch,
    Command,
    MarketStore,
    ReplaceGlobalStats,
)

logger = logging.getLogger(__name__)

RSI_INTERVAL_SEC = 300.0
STATS_INTERVAL_SEC = 60.0


class MarketDataSource(Protocol):
    async def fetch_closes(self, pair: str, interval: str) -> Optional[list[float]]: ...

    async def fetch_global_stats(self) -> Optional[GlobalStats]: ...

    async def fetch_markets(self, pages: int = 1, per_page: int = 250) -> Optional[list[Asset]]: ...


class RefreshScheduler:
    """Owns the periodic timers. start() after the universe exists; stop() cancels all."""

    def __init__(
        self,
        store: MarketStore,
        client: MarketDataSource,
        submit: Callable[[Command], None],
        rsi_interval: float = RSI_INTERVAL_SEC,
        stats_interval: float = STATS_INTERVAL_SEC,
        market_interval: Optional[float] = None,
        rsi_length: int = DEFAULT_RSI_LENGTH,
        timeframes: tuple[str, ...] = TIMEFRAMES,
        markets_pages: int = 1,
        markets_per_page: int = 250,
    ) -> None:
        self.store = store
        self.client = client
        self.submit = submit
        self.rsi_interval = rsi_interval
        self.stats_interval = stats_interval
        self.market_interval = market_interval
        self.rsi_length = rsi_length
        self.timeframes = timeframes
        self.markets_pages = markets_pages
        self.markets_per_page = markets_per_page

        self._tasks: list[asyncio.Task] = []
        self.cycle_count: int = 0

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # -- jobs --------------------------------------------------------------

    async def _timeframe_rsi(self, pair: str, timeframe: str) -> Optional[float]:
        closes = await self.client.fetch_closes(pair, timeframe)
        if closes is None:
            return None
        return compute_rsi(closes, self.rsi_length)

    async def recompute_asset(self, asset: Asset) -> Optional[ApplyRsiBatch]:
        """Fetch all timeframes for one asset and submit them as one batch."""
        if not asset.exchange_pair:
            return None

        results = await asyncio.gather(
            *(self._timeframe_rsi(asset.exchange_pair, tf) for tf in self.timeframes),
            return_exceptions=True,
        )

        readings: dict[str, Optional[float]] = {}
        for tf, result in zip(self.timeframes, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("RSI %s %s failed: %r", asset.exchange_pair, tf, result)
                readings[tf] = None
            else:
                readings[tf] = result

        batch = ApplyRsiBatch(asset.id, readings)
        self.submit(batch)
        return batch

    async def recompute_indicators(self) -> int:
        """One recompute cycle over every tracked asset. Returns batches submitted."""
        assets = [a for a in self.store.tracked_assets() if a.exchange_pair]
        if not assets:
            return 0

        self.cycle_count += 1
        logger.info("RSI cycle %d: %d assets x %d timeframes",
                    self.cycle_count, len(assets), len(self.timeframes))

        results = await asyncio.gather(
            *(self.recompute_asset(a) for a in assets),
            return_exceptions=True,
        )

        submitted = 0
        for asset, result in zip(assets, results):
            if isinstance(result, BaseException):
                logger.error("RSI recompute for %s failed: %r", asset.id, result)
            elif result is not None:
                submitted += 1
        return submitted

    async def refresh_global_stats(self) -> bool:
        """Replace GlobalStats; keep the old value on failure."""
        stats = await self.client.fetch_global_stats()
        if stats is None:
            logger.debug("Global stats unavailable, keeping previous value")
            return False
        self.submit(ReplaceGlobalStats(stats))
        return True

    async def refresh_market_fields(self) -> bool:
        """Re-snapshot base market fields for tracked assets."""
        assets = await self.client.fetch_markets(self.markets_pages, self.markets_per_page)
        if assets is None:
            return False
        tracked = set(self.store.universe.asset_ids)
        self.submit(ApplyMarketSnapshot(tuple(a for a in assets if a.id in tracked)))
        return True

    # -- timers ------------------------------------------------------------

    async def _every(
        self,
        interval: float,
        job: Callable[[], Awaitable[object]],
        name: str,
        run_immediately: bool = False,
    ) -> None:
        if not run_immediately:
            await asyncio.sleep(interval)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s job failed", name)
            await asyncio.sleep(interval)

    def start(self) -> None:
        """Start all timers. Indicator recompute runs immediately."""
        if self.running:
            return

        self._tasks = [
            asyncio.create_task(
                self._every(self.rsi_interval, self.recompute_indicators, "rsi", run_immediately=True),
                name="rsi-refresh",
            ),
            asyncio.create_task(
                self._every(self.stats_interval, self.refresh_global_stats, "stats"),
                name="stats-refresh",
            ),
        ]
        if self.market_interval is not None:
            self._tasks.append(asyncio.create_task(
                self._every(self.market_interval, self.refresh_market_fields, "markets"),
                name="market-refresh",
            ))

    async def stop(self) -> None:
        """Cancel every timer together."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
