"""
Data types for RSI Tracker.

Design notes:
- NamedTuple records are immutable; updates go through _replace() so a
  reader holding an old record never sees a half-written one
- RSI readings are float in [0, 100] or None ("unavailable")
"""

from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional

# Candle intervals tracked per asset, shortest first
TIMEFRAMES: tuple[str, ...] = ("5m", "15m", "1h", "4h", "1d", "1w")

# Timeframe -> Asset field holding its RSI
RSI_FIELDS: dict[str, str] = {tf: f"rsi_{tf}" for tf in TIMEFRAMES}


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class Asset(NamedTuple):
    """One tracked asset: market fields, live price and per-timeframe RSI."""
    id: str                       # Provider id, e.g. "bitcoin"
    symbol: str                   # Ticker as returned by the provider ("btc")
    name: str
    image: str = ""
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    exchange_pair: Optional[str] = None   # "BTCUSDT", set only by universe selection
    rsi_5m: Optional[float] = None
    rsi_15m: Optional[float] = None
    rsi_1h: Optional[float] = None
    rsi_4h: Optional[float] = None
    rsi_1d: Optional[float] = None
    rsi_1w: Optional[float] = None

    @classmethod
    def from_market(cls, record: Mapping[str, Any]) -> "Asset":
        """Build an asset from one /coins/markets record."""
        return cls(
            id=str(record["id"]),
            symbol=str(record["symbol"]),
            name=str(record.get("name") or ""),
            image=str(record.get("image") or ""),
            current_price=_as_float(record.get("current_price")),
            market_cap=_as_float(record.get("market_cap")),
            total_volume=_as_float(record.get("total_volume")),
            price_change_percentage_24h=_as_float(record.get("price_change_percentage_24h")),
        )

    def rsi(self, timeframe: str) -> Optional[float]:
        return getattr(self, RSI_FIELDS[timeframe])

    def rsi_readings(self) -> dict[str, Optional[float]]:
        return {tf: getattr(self, field) for tf, field in RSI_FIELDS.items()}


class TrackedUniverse(NamedTuple):
    """
    Ranked set of tracked asset ids.

    Order is market cap descending at selection time. Replaced wholesale,
    never edited.
    """
    asset_ids: tuple[str, ...]
    selected_at_ms: int = 0


class GlobalStats(NamedTuple):
    """Market-cap dominance percentages keyed by lowercase ticker."""
    market_cap_percentage: Mapping[str, float]

    @property
    def btc(self) -> Optional[float]:
        return self.market_cap_percentage.get("btc")

    @property
    def usdt(self) -> Optional[float]:
        return self.market_cap_percentage.get("usdt")


class Tick(NamedTuple):
    """Single trade from the live stream."""
    symbol: str    # Exchange pair, e.g. "BTCUSDT"
    price: float


class SortSpec(NamedTuple):
    """View ordering only. Has no effect on stored data."""
    key: str = "market_cap"
    direction: str = "desc"   # "asc" or "desc"
