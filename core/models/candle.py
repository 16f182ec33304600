"""Candle primitives and per-timeframe candle sets."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


def _to_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"bad {name} value: {value!r}") from None


@dataclass(frozen=True)
class Candle:
    """OHLC(V) bar as reported upstream."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_green(self) -> bool:
        return self.close >= self.open

    @classmethod
    def from_upstream(cls, row: dict) -> "Candle":
        """Build from a time_series row ({"datetime": ..., "open": "0.56", ...})."""
        if not isinstance(row, dict) or "datetime" not in row:
            raise ValueError(f"malformed candle row: {row!r}")
        volume = row.get("volume")
        return cls(
            timestamp=datetime.fromisoformat(str(row["datetime"])),
            open=_to_float(row.get("open"), "open"),
            high=_to_float(row.get("high"), "high"),
            low=_to_float(row.get("low"), "low"),
            close=_to_float(row.get("close"), "close"),
            volume=_to_float(volume, "volume") if volume not in (None, "") else None,
        )

    def to_dict(self) -> dict:
        out = {
            "datetime": self.timestamp.isoformat(sep=" "),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
        }
        if self.volume is not None:
            out["volume"] = self.volume
        return out


@dataclass(frozen=True)
class CandleSet:
    """All bars fetched for one timeframe in one poll. Bars are newest-first."""
    interval: str
    bars: tuple[Candle, ...]
    received_ms: int
    meta: dict = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def latest(self) -> Optional[Candle]:
        return self.bars[0] if self.bars else None

    def recent(self, count: int) -> tuple[Candle, ...]:
        """Newest ``count`` bars (fewer if the set is short), still newest-first."""
        return self.bars[:max(count, 0)]

    @classmethod
    def from_upstream(cls, interval: str, payload: dict, received_ms: int) -> "CandleSet":
        values = payload.get("values")
        if not isinstance(values, list):
            raise ValueError(f"time_series payload for {interval} has no values list")
        bars = tuple(Candle.from_upstream(row) for row in values)
        meta = payload.get("meta") or {}
        return cls(interval=interval, bars=bars, received_ms=received_ms, meta=dict(meta))

    def to_dict(self) -> dict:
        # Same shape as the upstream time_series body so clients can consume either
        return {
            "meta": self.meta,
            "values": [bar.to_dict() for bar in self.bars],
            "status": "ok",
        }
