"""
RSI Tracker - live prices and multi-timeframe RSI for the top crypto assets.

Architecture:
- datafeed/: REST snapshots, candles and the live trade stream
- engine/: RSI, universe selection, the market store and refresh timers
- ui/: asset board (Textual TUI), read-only consumer of the store
"""

__version__ = "0.1.0"
