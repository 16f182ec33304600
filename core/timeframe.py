"""Process-wide active candle timeframe."""

import threading
from typing import Iterable

ALL_TIMEFRAMES = ("1min", "5min", "15min", "30min", "1h", "4h")
DEFAULT_TIMEFRAME = "1min"


class TimeframeSelector:
    """Holds which timeframe counts as foreground for the poll scheduler."""

    def __init__(self, timeframes: Iterable[str] = ALL_TIMEFRAMES, active: str = DEFAULT_TIMEFRAME):
        self.timeframes = tuple(timeframes)
        if not self.timeframes:
            raise ValueError("at least one timeframe is required")
        self._lock = threading.Lock()
        self._active = self.validate(active)

    def validate(self, timeframe: str) -> str:
        if timeframe not in self.timeframes:
            raise ValueError(f"unknown timeframe {timeframe!r}; expected one of {list(self.timeframes)}")
        return timeframe

    @property
    def active(self) -> str:
        with self._lock:
            return self._active

    def set(self, timeframe: str) -> bool:
        """Make ``timeframe`` active. Returns True if it changed."""
        timeframe = self.validate(timeframe)
        with self._lock:
            if timeframe == self._active:
                return False
            self._active = timeframe
            return True

    def others(self) -> list[str]:
        """Non-active timeframes in canonical order."""
        active = self.active
        return [tf for tf in self.timeframes if tf != active]
