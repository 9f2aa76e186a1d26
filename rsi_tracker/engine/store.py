"""
In-memory market store.

All writes arrive as command objects. Each command owns one field group:
- ApplyPriceTick       -> current_price        (stream)
- ApplyRsiBatch        -> the six RSI fields   (scheduler)
- ApplyMarketSnapshot  -> base market fields   (snapshot refresh)
- ReplaceGlobalStats   -> GlobalStats          (snapshot refresh)
- ReplaceUniverse      -> membership + order   (universe selection)

Copy-on-write: an update builds a new Asset and a new mapping, never
mutates one in place. A StoreView handed out earlier stays consistent.

Thread-safety: NOT thread-safe. Designed for single-threaded async use,
with CommandExecutor serializing every write.
"""

from __future__ import annotations

import asyncio
import logging
import time
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional, Union

from ..types import RSI_FIELDS, Asset, GlobalStats, TrackedUniverse

logger = logging.getLogger(__name__)

# Base market fields written by snapshot refresh
MARKET_FIELDS = (
    "symbol", "name", "image", "market_cap",
    "total_volume", "price_change_percentage_24h",
)


class ApplyPriceTick(NamedTuple):
    asset_id: str
    price: float


class ApplyRsiBatch(NamedTuple):
    """All timeframes of one recompute for one asset. Missing timeframes become None."""
    asset_id: str
    readings: Mapping[str, Optional[float]]


class ReplaceGlobalStats(NamedTuple):
    stats: GlobalStats


class ApplyMarketSnapshot(NamedTuple):
    assets: tuple[Asset, ...]


class ReplaceUniverse(NamedTuple):
    assets: tuple[Asset, ...]     # Ranked, exchange_pair already assigned


Command = Union[ApplyPriceTick, ApplyRsiBatch, ReplaceGlobalStats, ApplyMarketSnapshot, ReplaceUniverse]


class StoreView(NamedTuple):
    """Read-only snapshot for consumers (view layer, scheduler, stream)."""
    assets: Mapping[str, Asset]
    order: tuple[str, ...]
    global_stats: Optional[GlobalStats]
    loading: bool
    version: int


class MarketStore:
    """Owns the asset map, universe order, GlobalStats and loading flag."""

    __slots__ = ('_assets', '_universe', '_global_stats', '_loading', '_live_priced', 'version')

    def __init__(self) -> None:
        self._assets: Mapping[str, Asset] = MappingProxyType({})
        self._universe = TrackedUniverse(asset_ids=())
        self._global_stats: Optional[GlobalStats] = None
        self._loading: bool = True
        # Assets whose current_price is owned by the stream
        self._live_priced: frozenset[str] = frozenset()
        self.version: int = 0

    # -- reads -------------------------------------------------------------

    @property
    def universe(self) -> TrackedUniverse:
        return self._universe

    @property
    def global_stats(self) -> Optional[GlobalStats]:
        return self._global_stats

    @property
    def loading(self) -> bool:
        return self._loading

    def get(self, asset_id: str) -> Optional[Asset]:
        return self._assets.get(asset_id)

    def view(self) -> StoreView:
        return StoreView(
            assets=self._assets,
            order=self._universe.asset_ids,
            global_stats=self._global_stats,
            loading=self._loading,
            version=self.version,
        )

    def tracked_assets(self) -> list[Asset]:
        """Assets in universe order."""
        assets = self._assets
        return [assets[i] for i in self._universe.asset_ids if i in assets]

    def pair_index(self) -> dict[str, str]:
        """Exchange pair -> asset id for the current universe."""
        return {
            asset.exchange_pair: asset.id
            for asset in self.tracked_assets()
            if asset.exchange_pair
        }

    # -- writes ------------------------------------------------------------

    def apply(self, command: Command) -> bool:
        """Apply one command. Returns True if the store changed."""
        if isinstance(command, ApplyPriceTick):
            changed = self._apply_price(command)
        elif isinstance(command, ApplyRsiBatch):
            changed = self._apply_rsi(command)
        elif isinstance(command, ReplaceGlobalStats):
            changed = self._replace_stats(command)
        elif isinstance(command, ApplyMarketSnapshot):
            changed = self._apply_market(command)
        elif isinstance(command, ReplaceUniverse):
            changed = self._replace_universe(command)
        else:
            raise TypeError(f"Unknown store command: {command!r}")

        if changed:
            self.version += 1
        return changed

    def _put(self, asset: Asset) -> None:
        assets = dict(self._assets)
        assets[asset.id] = asset
        self._assets = MappingProxyType(assets)

    def _apply_price(self, cmd: ApplyPriceTick) -> bool:
        """
        HOT PATH - called for every trade on ~100 streams.
        """
        asset = self._assets.get(cmd.asset_id)
        if asset is None:
            return False

        if cmd.asset_id not in self._live_priced:
            self._live_priced = self._live_priced | {cmd.asset_id}

        if asset.current_price == cmd.price:
            return False

        self._put(asset._replace(current_price=cmd.price))
        return True

    def _apply_rsi(self, cmd: ApplyRsiBatch) -> bool:
        asset = self._assets.get(cmd.asset_id)
        if asset is None:
            logger.debug("Dropping RSI batch for untracked asset %s", cmd.asset_id)
            return False

        fields = {field: cmd.readings.get(tf) for tf, field in RSI_FIELDS.items()}
        updated = asset._replace(**fields)
        if updated == asset:
            return False

        self._put(updated)
        return True

    def _replace_stats(self, cmd: ReplaceGlobalStats) -> bool:
        percentages = dict(cmd.stats.market_cap_percentage)
        previous = self._global_stats
        if previous is not None and dict(previous.market_cap_percentage) == percentages:
            return False
        self._global_stats = GlobalStats(MappingProxyType(percentages))
        return True

    def _apply_market(self, cmd: ApplyMarketSnapshot) -> bool:
        assets = dict(self._assets)
        changed = False

        for fresh in cmd.assets:
            current = assets.get(fresh.id)
            if current is None:
                continue   # Membership only changes through ReplaceUniverse

            fields = {name: getattr(fresh, name) for name in MARKET_FIELDS}
            if fresh.id not in self._live_priced:
                fields["current_price"] = fresh.current_price

            updated = current._replace(**fields)
            if updated != current:
                assets[fresh.id] = updated
                changed = True

        if changed:
            self._assets = MappingProxyType(assets)
        return changed

    def _replace_universe(self, cmd: ReplaceUniverse) -> bool:
        assets: dict[str, Asset] = {}
        order: list[str] = []
        for asset in cmd.assets:
            if asset.id in assets:
                continue
            assets[asset.id] = asset
            order.append(asset.id)

        self._assets = MappingProxyType(assets)
        self._universe = TrackedUniverse(
            asset_ids=tuple(order),
            selected_at_ms=int(time.time() * 1000),
        )
        self._live_priced = frozenset()
        self._loading = False
        logger.info("Universe replaced: %d assets", len(order))
        return True


class CommandExecutor:
    """
    Single consumer that applies commands to the store in arrival order.

    Producers call submit() and never touch the store directly, so
    multi-field commands (RSI batches, universe swaps) apply as one step.
    """

    def __init__(self, store: MarketStore) -> None:
        self.store = store
        self._queue: asyncio.Queue[Command] = asyncio.Queue()
        self._running = False
        self.applied_count: int = 0

    def submit(self, command: Command) -> None:
        """Enqueue a command. Non-blocking."""
        self._queue.put_nowait(command)

    async def run(self) -> None:
        """Drain the queue forever. Cancel the task to stop."""
        self._running = True
        while self._running:
            command = await self._queue.get()
            try:
                if self.store.apply(command):
                    self.applied_count += 1
            except Exception:
                logger.exception("Failed to apply %s", type(command).__name__)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every submitted command has been applied."""
        await self._queue.join()

    def stop(self) -> None:
        self._running = False
