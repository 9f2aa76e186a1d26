#!/usr/bin/env python3
"""
RSI Tracker - live prices and multi-timeframe RSI for the top ~100 crypto assets.

Usage:
    python -m rsi_tracker.main
    python -m rsi_tracker.main --universe-size 50 --rsi-length 14

    Or via the console script:
    rsi-tracker --headless

Controls:
    q - Quit
    a/p/c/m/v - Sort by asset, price, 24h change, market cap, volume
    1-6 - Sort by RSI 5m, 15m, 1h, 4h, 1d, 1w
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from .config import Settings, setup_logging

logger = logging.getLogger(__name__)


async def main(settings: Settings, headless: bool = False) -> None:
    """Main entry point - runs the tracker and the UI concurrently."""

    # Import here to avoid slow startup for --help
    import aiohttp

    from .tracker import Tracker

    logger.info("Starting RSI Tracker (%d assets, RSI %d)", settings.universe_size, settings.rsi_length)

    connector = aiohttp.TCPConnector(limit=settings.http_connection_limit)
    timeout = aiohttp.ClientTimeout(total=settings.request_timeout_sec)

    async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
        tracker = Tracker(settings, session)

        # Start in the background so the UI shows the loading state
        start_task = asyncio.create_task(tracker.start())

        try:
            if headless:
                await start_task
                while True:
                    await asyncio.sleep(settings.stats_interval_sec)
                    logger.info(tracker.summary_line())
            else:
                from .ui.board_view import run_ui

                # Run UI (blocks until quit)
                await run_ui(tracker.store, tracker.stream_status)
        finally:
            # Cleanup
            start_task.cancel()
            try:
                await start_task
            except asyncio.CancelledError:
                pass
            await tracker.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RSI Tracker - live prices and multi-timeframe RSI for top crypto assets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m rsi_tracker.main
    python -m rsi_tracker.main --headless --log-level DEBUG
    python -m rsi_tracker.main --universe-size 50 --rsi-interval 120

Environment variables RSI_TRACKER_<SETTING> (e.g. RSI_TRACKER_RSI_LENGTH)
provide defaults; command line flags take precedence.
        """
    )

    parser.add_argument(
        "--universe-size",
        type=int,
        help="Maximum number of tracked assets (default: 100)"
    )

    parser.add_argument(
        "--rsi-length",
        type=int,
        help="RSI window length (default: 14)"
    )

    parser.add_argument(
        "--rsi-interval",
        type=float,
        dest="rsi_interval_sec",
        help="Seconds between RSI recomputes (default: 300)"
    )

    parser.add_argument(
        "--stats-interval",
        type=float,
        dest="stats_interval_sec",
        help="Seconds between global stats refreshes (default: 60)"
    )

    parser.add_argument(
        "--market-interval",
        type=float,
        dest="market_interval_sec",
        help="Seconds between market field refreshes (default: off)"
    )

    parser.add_argument(
        "--reconnect-delay",
        type=float,
        dest="reconnect_delay_sec",
        help="Seconds before reconnecting the trade stream (default: 5)"
    )

    parser.add_argument(
        "--pages",
        type=int,
        dest="markets_pages",
        help="Market snapshot pages of 250 to scan (default: 1)"
    )

    parser.add_argument(
        "--log-level",
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="No TUI; log a status line every stats interval"
    )

    return parser


def cli() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    try:
        settings = Settings.from_env().with_overrides(
            universe_size=args.universe_size,
            rsi_length=args.rsi_length,
            rsi_interval_sec=args.rsi_interval_sec,
            stats_interval_sec=args.stats_interval_sec,
            market_interval_sec=args.market_interval_sec,
            reconnect_delay_sec=args.reconnect_delay_sec,
            markets_pages=args.markets_pages,
            log_level=args.log_level,
        )
    except ValueError as e:
        parser.error(str(e))

    if args.headless:
        setup_logging(settings.log_level)
    else:
        from textual.logging import TextualHandler
        setup_logging(settings.log_level, TextualHandler())

    # Run
    try:
        asyncio.run(main(settings, headless=args.headless))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
