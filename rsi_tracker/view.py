"""
View projection: sort requests and display order.

Sorting never touches the store; it only reorders the universe ids a
consumer reads.
"""

from __future__ import annotations

from typing import Any, Optional

from .engine.store import StoreView
from .types import RSI_FIELDS, Asset, SortSpec

ASSET_KEY = "asset"   # Sorts by symbol

SORTABLE_KEYS: tuple[str, ...] = (
    ASSET_KEY,
    "current_price",
    "price_change_percentage_24h",
    "market_cap",
    "total_volume",
    *RSI_FIELDS.values(),
)

DEFAULT_SORT = SortSpec("market_cap", "desc")


def request_sort(current: SortSpec, key: str) -> SortSpec:
    """
    Next SortSpec after the user asks to sort by key.

    Same key while ascending flips to descending. A new key starts
    descending, except the asset column which starts ascending.
    """
    if key not in SORTABLE_KEYS:
        raise ValueError(f"Unsortable key: {key}")

    if current.key == key and current.direction == "asc":
        return SortSpec(key, "desc")
    if current.key != key and key != ASSET_KEY:
        return SortSpec(key, "desc")
    return SortSpec(key, "asc")


def sort_value(asset: Asset, key: str) -> Any:
    if key == ASSET_KEY:
        return asset.symbol
    return getattr(asset, key)


def project_order(view: StoreView, sort: Optional[SortSpec] = DEFAULT_SORT) -> list[str]:
    """
    Universe ids in display order. Missing values go last in both directions.
    """
    present = [i for i in view.order if i in view.assets]
    if sort is None:
        return present

    with_value: list[tuple[Any, str]] = []
    missing: list[str] = []
    for asset_id in present:
        value = sort_value(view.assets[asset_id], sort.key)
        if value is None:
            missing.append(asset_id)
        else:
            with_value.append((value, asset_id))

    # Stable sort on value only, so equal values keep rank order
    with_value.sort(key=lambda item: item[0], reverse=sort.direction == "desc")
    return [asset_id for _, asset_id in with_value] + missing
