"""
Wilder's smoothed RSI.

Called once per (asset, timeframe) per recompute cycle, ~600 times every
5 minutes for a full universe, on series of up to 300 closes.

Performance notes:
- Deltas and gain/loss split are vectorised with numpy
- The smoothing recurrence is inherently sequential, kept as a plain loop
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

DEFAULT_RSI_LENGTH = 14


def compute_rsi(closes: Sequence[float], length: int = DEFAULT_RSI_LENGTH) -> Optional[float]:
    """
    Compute the latest RSI value of a close series (oldest first).

    Returns None when fewer than length + 1 closes are available or the
    series contains non-finite values.
    """
    if length < 1:
        raise ValueError(f"RSI length must be >= 1, got {length}")

    if len(closes) < length + 1:
        return None

    prices = np.asarray(closes, dtype=np.float64)
    if not np.isfinite(prices).all():
        return None

    deltas = np.diff(prices)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    # Seed with the simple mean of the first window
    avg_gain = float(gains[:length].sum()) / length
    avg_loss = float(losses[:length].sum()) / length

    for gain, loss in zip(gains[length:].tolist(), losses[length:].tolist()):
        avg_gain = (avg_gain * (length - 1) + gain) / length
        avg_loss = (avg_loss * (length - 1) + loss) / length

    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)
