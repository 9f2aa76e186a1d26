"""
RSI board TUI using Textual.

Displays:
- Top: BTC / USDT dominance, tracked count, stream state
- Body: one row per tracked asset with price, 24h change, market cap,
  volume and RSI on six timeframes

Performance notes:
- Polls the store version, re-renders only when it changed
- Renders at max ~4 FPS; the stream can patch prices far faster
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable, Optional

from rich.console import RenderableType
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Static

from ..types import TIMEFRAMES, SortSpec
from ..view import ASSET_KEY, DEFAULT_SORT, project_order, request_sort

if TYPE_CHECKING:
    from ..engine.store import MarketStore, StoreView
    from ..types import Asset

# Color scheme (dark theme)
UP_COLOR = "#22c55e"       # Green
DOWN_COLOR = "#ef4444"     # Red
OVERBOUGHT_COLOR = "#ef4444"
OVERSOLD_COLOR = "#22c55e"
NEUTRAL_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"

REFRESH_SEC = 0.25

# (header, sort key, justify)
COLUMNS: list[tuple[str, str, str]] = [
    ("Asset", ASSET_KEY, "left"),
    ("Price", "current_price", "right"),
    ("24h", "price_change_percentage_24h", "right"),
    ("Mkt Cap", "market_cap", "right"),
    ("Volume", "total_volume", "right"),
    *[(f"RSI {tf}", f"rsi_{tf}", "right") for tf in TIMEFRAMES],
]


def format_price(price: Optional[float]) -> str:
    """Format price for display."""
    if price is None:
        return "-"
    if price >= 1000:
        return f"{price:,.2f}"
    elif price >= 1:
        return f"{price:.3f}"
    else:
        return f"{price:.6f}"


def format_large(value: Optional[float]) -> str:
    """Format market cap / volume for display."""
    if value is None:
        return "-"
    for threshold, suffix in ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K")):
        if value >= threshold:
            return f"{value / threshold:.2f}{suffix}"
    return f"{value:.0f}"


def rsi_text(value: Optional[float]) -> Text:
    if value is None:
        return Text("-", style="dim")
    if value >= 70:
        color = OVERBOUGHT_COLOR
    elif value <= 30:
        color = OVERSOLD_COLOR
    else:
        color = NEUTRAL_COLOR
    return Text(f"{value:.1f}", style=color)


def change_text(value: Optional[float]) -> Text:
    if value is None:
        return Text("-", style="dim")
    color = UP_COLOR if value >= 0 else DOWN_COLOR
    return Text(f"{value:+.2f}%", style=color)


def build_table(view: StoreView, sort: SortSpec) -> Table:
    """Rich table of the tracked assets in projected order."""
    table = Table(
        show_header=True,
        header_style=HEADER_COLOR,
        box=None,
        padding=(0, 1),
        collapse_padding=True,
    )

    for header, key, justify in COLUMNS:
        if key == sort.key:
            header = f"{header} {'▲' if sort.direction == 'asc' else '▼'}"
        table.add_column(header, justify=justify, no_wrap=True)

    for asset_id in project_order(view, sort):
        asset: Asset = view.assets[asset_id]
        table.add_row(
            Text(asset.symbol.upper(), style="bold"),
            Text(format_price(asset.current_price)),
            change_text(asset.price_change_percentage_24h),
            Text(format_large(asset.market_cap)),
            Text(format_large(asset.total_volume)),
            *[rsi_text(asset.rsi(tf)) for tf in TIMEFRAMES],
        )

    return table


class BoardTable(Static):
    """Main asset table widget."""

    DEFAULT_CSS = """
    BoardTable {
        width: 100%;
        height: auto;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._view: StoreView | None = None
        self.sort: SortSpec = DEFAULT_SORT

    def update_view(self, view: StoreView) -> None:
        self._view = view
        self.refresh(layout=True)

    def request_sort(self, key: str) -> None:
        self.sort = request_sort(self.sort, key)
        self.refresh(layout=True)

    def render(self) -> RenderableType:
        if self._view is None or self._view.loading:
            return Text("Loading universe...", style="dim")
        if not self._view.order:
            return Text("No assets tracked", style="dim")
        return build_table(self._view, self.sort)


class StatusBar(Static):
    """Dominance, universe size and stream health."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self, stream_status: Callable[[], str]) -> None:
        super().__init__()
        self._view: StoreView | None = None
        self._stream_status = stream_status

    def update_view(self, view: StoreView) -> None:
        self._view = view
        self.refresh()

    def render(self) -> RenderableType:
        if self._view is None:
            return Text("Connecting...", style="dim")

        stats = self._view.global_stats
        btc = f"{stats.btc:.2f}%" if stats and stats.btc is not None else "-"
        usdt = f"{stats.usdt:.2f}%" if stats and stats.usdt is not None else "-"

        parts = [
            Text(" RSI BOARD ", style="bold white on #1e40af"),
            Text("  BTC.D: ", style="dim"),
            Text(btc, style="yellow"),
            Text("  USDT.D: ", style="dim"),
            Text(usdt, style="yellow"),
            Text("  │  ", style="dim"),
            Text("Assets: ", style="dim"),
            Text(str(len(self._view.order)), style="cyan"),
            Text("  Stream: ", style="dim"),
            Text(self._stream_status(), style="cyan"),
        ]

        result = Text()
        for p in parts:
            result.append(p)
        return result


class BoardApp(App):
    """RSI board application. Reads the store, never writes it."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
        overflow-y: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("a", "sort('asset')", "Asset"),
        ("p", "sort('current_price')", "Price"),
        ("c", "sort('price_change_percentage_24h')", "24h"),
        ("m", "sort('market_cap')", "Mkt Cap"),
        ("v", "sort('total_volume')", "Volume"),
        *[(str(i), f"sort('rsi_{tf}')", f"RSI {tf}") for i, tf in enumerate(TIMEFRAMES, 1)],
    ]

    def __init__(self, store: MarketStore, stream_status: Callable[[], str] = lambda: "-") -> None:
        super().__init__()
        self.store = store
        self._stream_status = stream_status
        self._status_bar: StatusBar | None = None
        self._board: BoardTable | None = None
        self._last_version: int = -1

    def compose(self) -> ComposeResult:
        self._status_bar = StatusBar(self._stream_status)
        self._board = BoardTable()

        yield self._status_bar
        yield Container(self._board, id="main-container")
        yield Footer()

    async def on_mount(self) -> None:
        """Start the store watcher task."""
        self.run_worker(self._watch_store(), exclusive=True)

    async def _watch_store(self) -> None:
        """Push new store views to the widgets when the version changes."""
        while True:
            try:
                view = self.store.view()
                if view.version != self._last_version:
                    self._last_version = view.version
                    if self._board:
                        self._board.update_view(view)
                if self._status_bar:
                    self._status_bar.update_view(view)
                await asyncio.sleep(REFRESH_SEC)
            except asyncio.CancelledError:
                break

    def action_sort(self, key: str) -> None:
        """Sort request from a key binding."""
        if self._board:
            self._board.request_sort(key)


async def run_ui(store: MarketStore, stream_status: Callable[[], str] = lambda: "-") -> None:
    """Run the TUI application."""
    app = BoardApp(store, stream_status)
    await app.run_async()
