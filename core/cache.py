"""
Shared snapshot of the latest upstream data.

Written only by the poll scheduler; read by REST handlers and by subscriber
bootstrap. Every write replaces a whole immutable entry, so a reader sees
either the previous value or the new one, never a mix.
"""

import threading
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from core.models import CandleSet, PricePoint, Quote

PRICE_KEY = "price"
QUOTE_KEY = "quote"
_CANDLES_PREFIX = "candles:"


def candles_key(timeframe: str) -> str:
    return f"{_CANDLES_PREFIX}{timeframe}"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    updated_ms: int


class SharedStateCache:
    """Key -> (value, last updated) map with whole-value replacement."""

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: Any, now: int) -> CacheEntry:
        entry = CacheEntry(value=value, updated_ms=now)
        with self._lock:
            self._entries[key] = entry
        return entry

    def age_ms(self, key: str, now: int) -> Optional[int]:
        """Age of an entry, or None if the key was never written."""
        entry = self.get(key)
        if entry is None:
            return None
        return max(now - entry.updated_ms, 0)

    @property
    def last_update(self) -> int:
        with self._lock:
            return max((e.updated_ms for e in self._entries.values()), default=0)

    # Typed accessors

    def price(self) -> Optional[CacheEntry]:
        return self.get(PRICE_KEY)

    def quote(self) -> Optional[CacheEntry]:
        return self.get(QUOTE_KEY)

    def candles(self, timeframe: str) -> Optional[CacheEntry]:
        return self.get(candles_key(timeframe))

    def put_price(self, point: PricePoint, now: int) -> CacheEntry:
        return self.put(PRICE_KEY, point, now)

    def put_quote(self, quote: Quote, now: int) -> CacheEntry:
        return self.put(QUOTE_KEY, quote, now)

    def put_candles(self, candle_set: CandleSet, now: int) -> CacheEntry:
        return self.put(candles_key(candle_set.interval), candle_set, now)

    def cached_timeframes(self, order: Iterable[str] = ()) -> list[str]:
        """Timeframes with a candle set, in ``order`` first, then any others sorted."""
        with self._lock:
            present = {k[len(_CANDLES_PREFIX):] for k in self._entries if k.startswith(_CANDLES_PREFIX)}
        ordered = [tf for tf in order if tf in present]
        return ordered + sorted(present - set(ordered))
