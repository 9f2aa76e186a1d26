"""
Live trade stream reconciler.

Keeps one Binance combined-stream connection subscribed to <pair>@trade
for every tracked asset, and turns each trade into an ApplyPriceTick.

Connection lifecycle (owned by the run() supervisor task):

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED
                                     ^              |
                                     +-- delay -----+

- The subscription list is rebuilt from the store on every connect
- A new connection closes the previous one before becoming current,
  so at most one connection is ever live
- A connect that completes after resubscribe() was requested is closed
  unused, and the supervisor reconnects with the new pair list
- No cap on reconnect attempts

Performance notes:
- Uses orjson for message parsing
- Pair -> asset id lookup is a dict built once per connection
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from typing import Callable, Optional

import aiohttp
import orjson

from ..config import BINANCE_WS_BASE
from ..engine.store import ApplyPriceTick, Command, MarketStore
from ..types import Tick

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY_SEC = 5.0

# Messages that end the current connection
_TERMINAL_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
    aiohttp.WSMsgType.ERROR,
)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def parse_tick(raw: str | bytes) -> Optional[Tick]:
    """
    Parse one combined-stream trade message.

    Expected format: {"stream": "btcusdt@trade", "data": {"s": "BTCUSDT", "p": "67000.10", ...}}
    Returns None for anything that is not a well-formed trade, including
    non-finite prices ("NaN", "Infinity").
    """
    try:
        message = orjson.loads(raw)
        payload = message.get("data", message)
        tick = Tick(symbol=str(payload["s"]), price=float(payload["p"]))
    except (orjson.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(tick.price):
        return None
    return tick


class StreamReconciler:
    """
    Supervises the live trade connection and feeds prices into the store.

    Usage:
        stream = StreamReconciler(session, store, executor.submit)
        task = asyncio.create_task(stream.run())
        ...
        stream.stop()
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        store: MarketStore,
        submit: Callable[[Command], None],
        ws_base: str = BINANCE_WS_BASE,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SEC,
        heartbeat: Optional[float] = 30.0,
    ) -> None:
        self.session = session
        self.store = store
        self.submit = submit
        self.ws_base = ws_base.rstrip("/")
        self.reconnect_delay = reconnect_delay
        self.heartbeat = heartbeat

        # State
        self._state = ConnectionState.DISCONNECTED
        self._running = False
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._pair_index: dict[str, str] = {}
        self._resubscribe = asyncio.Event()

        # Counters for status display
        self.connect_count: int = 0
        self.tick_count: int = 0
        self.dropped_count: int = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pairs(self) -> list[str]:
        return list(self._pair_index)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Stream %s -> %s", self._state.value, state.value)
            self._state = state

    def refresh_pairs(self) -> list[str]:
        """Rebuild the pair -> asset id index from the current universe."""
        self._pair_index = self.store.pair_index()
        return list(self._pair_index)

    def build_ws_url(self, pairs: list[str]) -> str:
        """Combined stream URL with one <pair>@trade token per pair."""
        streams = "/".join(f"{pair.lower()}@trade" for pair in pairs)
        return f"{self.ws_base}/stream?streams={streams}"

    def handle_message(self, raw: str | bytes) -> Optional[Tick]:
        """
        Apply one inbound message.

        HOT PATH - called for every trade on every tracked pair.
        """
        tick = parse_tick(raw)
        if tick is None:
            self.dropped_count += 1
            logger.debug("Dropping malformed stream message")
            return None

        asset_id = self._pair_index.get(tick.symbol)
        if asset_id is None:
            # Outside the current universe
            self.dropped_count += 1
            return None

        self.tick_count += 1
        asset = self.store.get(asset_id)
        if asset is not None and asset.current_price == tick.price:
            return tick

        self.submit(ApplyPriceTick(asset_id, tick.price))
        return tick

    async def _adopt(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Make ws the current connection, closing any previous one first."""
        previous, self._ws = self._ws, None
        if previous is not None and not previous.closed:
            await previous.close()
        self._ws = ws

    async def _close_current(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()

    async def _connect_and_consume(self, url: str) -> None:
        self._set_state(ConnectionState.CONNECTING)
        ws = await self.session.ws_connect(url, heartbeat=self.heartbeat)
        if self._resubscribe.is_set() or not self._running:
            # Universe changed while connecting; this URL is stale
            logger.debug("Discarding connection opened for a superseded pair list")
            await ws.close()
            return
        await self._adopt(ws)
        self.connect_count += 1
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Stream connected (%d pairs)", len(self._pair_index))

        async for msg in ws:
            if not self._running or self._resubscribe.is_set():
                break
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.handle_message(msg.data)
            elif msg.type in _TERMINAL_TYPES:
                break

    async def _wait_for_resubscribe(self, timeout: Optional[float]) -> None:
        try:
            await asyncio.wait_for(self._resubscribe.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        """
        Supervisor loop. Runs until stop() or task cancellation.
        """
        self._running = True

        while self._running:
            self._resubscribe.clear()
            pairs = self.refresh_pairs()

            if not pairs:
                logger.debug("No tracked pairs, waiting for universe")
                await self._wait_for_resubscribe(None)
                continue

            url = self.build_ws_url(pairs)
            try:
                await self._connect_and_consume(url)
                if self._running and not self._resubscribe.is_set():
                    logger.warning("Stream closed by server")
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning("Stream error: %r", e)
            finally:
                await self._close_current()
                self._set_state(ConnectionState.DISCONNECTED)

            if not self._running:
                break
            if self._resubscribe.is_set():
                continue

            logger.info("Reconnecting stream in %.0fs", self.reconnect_delay)
            await self._wait_for_resubscribe(self.reconnect_delay)

        logger.info("Stream supervisor stopped")

    async def resubscribe(self) -> None:
        """Reconnect now with the store's current universe."""
        self._resubscribe.set()
        await self._close_current()

    def stop(self) -> None:
        """Signal the supervisor to stop. Cancel its task to interrupt a pending receive."""
        self._running = False
        self._resubscribe.set()
