"""Quote derived from the active timeframe's most recent candles."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from core.models.candle import CandleSet

DEFAULT_QUOTE_BARS = 60


@dataclass(frozen=True)
class Quote:
    high: float
    low: float
    open: float
    interval: str
    bars: int

    def to_dict(self) -> dict:
        return {
            "high": self.high,
            "low": self.low,
            "open": self.open,
            "interval": self.interval,
            "bars": self.bars,
        }


def derive_quote(candles: CandleSet, max_bars: int = DEFAULT_QUOTE_BARS) -> Optional[Quote]:
    """
    Aggregate the newest ``max_bars`` bars of a candle set into a quote.

    high is the max of highs, low the min of lows, and open is the open of the
    chronologically oldest bar in the window (the last one, since bars are
    newest-first). Returns None for an empty set.
    """
    window = candles.recent(max_bars)
    if not window:
        return None
    highs = np.array([bar.high for bar in window], dtype=float)
    lows = np.array([bar.low for bar in window], dtype=float)
    return Quote(
        high=float(highs.max()),
        low=float(lows.min()),
        open=float(window[-1].open),
        interval=candles.interval,
        bars=len(window),
    )
