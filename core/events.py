"""Push-stream event shapes.

Every update pushed to subscribers is a StreamEvent serialized as one
Server-Sent Events ``data:`` frame; keep-alives are SSE comment lines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

PRICE = "price"
QUOTE = "quote"
CANDLES = "candles"
EVENT_TYPES = (PRICE, QUOTE, CANDLES)

KEEPALIVE_LINE = ": hb\n\n"


@dataclass(frozen=True)
class StreamEvent:
    type: str
    data: Any
    ts: int
    interval: Optional[str] = None

    def __post_init__(self):
        if self.type not in EVENT_TYPES:
            raise ValueError(f"unknown event type {self.type!r}")

    def to_dict(self) -> dict:
        data = self.data.to_dict() if hasattr(self.data, "to_dict") else self.data
        out: dict = {"type": self.type}
        if self.interval is not None:
            out["interval"] = self.interval
        out["data"] = data
        out["ts"] = self.ts
        return out

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), separators=(',', ':'), default=str)}\n\n"


def price_event(point, ts: int) -> StreamEvent:
    return StreamEvent(type=PRICE, data=point, ts=ts)


def quote_event(quote, ts: int) -> StreamEvent:
    return StreamEvent(type=QUOTE, data=quote, ts=ts)


def candles_event(candle_set, ts: int) -> StreamEvent:
    return StreamEvent(type=CANDLES, data=candle_set, ts=ts, interval=candle_set.interval)
