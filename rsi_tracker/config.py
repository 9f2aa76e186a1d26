"""
Runtime settings and logging setup.

Precedence: dataclass defaults < RSI_TRACKER_* environment variables < CLI flags.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Optional

# Market data endpoints
COINGECKO_BASE = "https://api.coingecko.com/api/v3"
BINANCE_REST_BASE = "https://api.binance.com/api/v3"
BINANCE_WS_BASE = "wss://stream.binance.com:9443"

ENV_PREFIX = "RSI_TRACKER_"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    coingecko_base: str = COINGECKO_BASE
    binance_rest_base: str = BINANCE_REST_BASE
    binance_ws_base: str = BINANCE_WS_BASE

    rsi_length: int = 14
    kline_limit: int = 300
    universe_size: int = 100
    markets_per_page: int = 250
    markets_pages: int = 1

    rsi_interval_sec: float = 300.0
    stats_interval_sec: float = 60.0
    market_interval_sec: Optional[float] = None   # None = no periodic market refresh
    reconnect_delay_sec: float = 5.0

    http_connection_limit: int = 20
    request_timeout_sec: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.rsi_length < 1:
            raise ValueError("rsi_length must be >= 1")
        if not (1 <= self.kline_limit <= 1000):
            raise ValueError("kline_limit must be between 1-1000")
        if self.universe_size <= 0:
            raise ValueError("universe_size must be positive")
        if not (1 <= self.markets_per_page <= 250):
            raise ValueError("markets_per_page must be between 1-250")
        if self.markets_pages <= 0:
            raise ValueError("markets_pages must be positive")
        for name in ("rsi_interval_sec", "stats_interval_sec", "request_timeout_sec"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.market_interval_sec is not None and self.market_interval_sec <= 0:
            raise ValueError("market_interval_sec must be positive")
        if self.reconnect_delay_sec < 0:
            raise ValueError("reconnect_delay_sec cannot be negative")
        if self.http_connection_limit < 0:
            raise ValueError("http_connection_limit cannot be negative")

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "Settings":
        """Build settings from RSI_TRACKER_<FIELD> variables."""
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            overrides[f.name] = _coerce(f.name, f.default, raw)

        return cls(**overrides)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _coerce(name: str, default: Any, raw: str) -> Any:
    if name == "market_interval_sec":
        return None if raw.lower() in ("none", "off", "0") else float(raw)
    if isinstance(default, bool):
        return raw.lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def setup_logging(level: str = "INFO", handler: Optional[logging.Handler] = None) -> None:
    """
    Configure root logging once. Safe to call repeatedly.

    Pass a handler to route records away from stderr (the TUI owns the terminal).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler] if handler is not None else None,
    )

    # Suppress noisy libraries
    for lib in ("aiohttp", "asyncio"):
        logging.getLogger(lib).setLevel(logging.WARNING)
