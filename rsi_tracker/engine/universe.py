"""
Universe selection: which assets are tracked and under which exchange pair.

Filter pipeline, applied in order per candidate:
1. Pair SYMBOL + quote asset must be actively trading on the exchange
2. Symbol must not be a stablecoin
3. Must not look like a wrapped token (heuristic, see UniversePolicy)
4. Keep the first `limit` survivors, in input (market cap) order

The wrapped-token rule is approximate. It will misclassify some future
listings that happen to start with "w"; wrapped_exceptions patches the
known cases.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, Optional

from ..types import Asset

logger = logging.getLogger(__name__)

STABLECOIN_SYMBOLS = frozenset({
    "usdt", "usdc", "busd", "dai", "tusd", "ustc", "usdp",
    "ust", "frax", "lusd", "gusd", "usdn", "fdusd",
})


@dataclass(frozen=True)
class UniversePolicy:
    """Selection rules as data so they can be inspected and tested."""
    quote_asset: str = "USDT"
    stable_symbols: frozenset[str] = field(default=STABLECOIN_SYMBOLS)
    wrapped_name_marker: str = "wrapped"
    wrapped_symbol_prefix: str = "w"
    wrapped_max_plain_length: int = 3      # "w" symbols longer than this are suspect
    wrapped_exceptions: frozenset[str] = frozenset({"woo", "waves"})
    limit: int = 100

    def pair_for(self, symbol: str) -> str:
        return f"{symbol.upper()}{self.quote_asset}"

    def is_stablecoin(self, symbol: str) -> bool:
        return symbol.lower() in self.stable_symbols

    def is_wrapped(self, symbol: str, name: str) -> bool:
        sym = symbol.lower()
        if sym in self.wrapped_exceptions:
            return False
        if name.lower().startswith(self.wrapped_name_marker):
            return True
        return sym.startswith(self.wrapped_symbol_prefix) and len(sym) > self.wrapped_max_plain_length

    def rejection_reason(self, asset: Asset, tradable_pairs: AbstractSet[str]) -> Optional[str]:
        """Return why an asset is rejected, or None if it is accepted."""
        if self.pair_for(asset.symbol) not in tradable_pairs:
            return "no tradable pair"
        if self.is_stablecoin(asset.symbol):
            return "stablecoin"
        if self.is_wrapped(asset.symbol, asset.name):
            return "wrapped token"
        return None


DEFAULT_POLICY = UniversePolicy()


def select_universe(
    candidates: Iterable[Asset],
    tradable_pairs: AbstractSet[str],
    policy: UniversePolicy = DEFAULT_POLICY,
) -> list[Asset]:
    """
    Filter ranked candidates down to the tracked universe.

    Args:
        candidates: Assets ordered by market cap, descending
        tradable_pairs: Exchange symbols currently in TRADING status

    Returns accepted assets with exchange_pair assigned, rank order kept.
    """
    selected: list[Asset] = []
    seen: set[str] = set()

    for asset in candidates:
        if asset.id in seen:
            continue
        seen.add(asset.id)

        reason = policy.rejection_reason(asset, tradable_pairs)
        if reason is not None:
            logger.debug("Skipping %s (%s): %s", asset.symbol, asset.id, reason)
            continue

        selected.append(asset._replace(exchange_pair=policy.pair_for(asset.symbol)))
        if len(selected) >= policy.limit:
            break

    logger.info("Selected %d assets for tracking", len(selected))
    return selected
