"""Tests for candle parsing and quote derivation."""

from datetime import datetime

import pytest

from core.models import Candle, CandleSet, PricePoint, derive_quote
from tests.test_helpers import series_payload


def test_candle_from_upstream_row():
    candle = Candle.from_upstream({
        "datetime": "2024-01-05 12:00:00",
        "open": "0.56100",
        "high": "0.56200",
        "low": "0.56000",
        "close": "0.56150",
    })
    assert candle.timestamp == datetime(2024, 1, 5, 12, 0)
    assert candle.high == pytest.approx(0.562)
    assert candle.volume is None
    assert candle.is_green
    assert candle.to_dict()["datetime"] == "2024-01-05 12:00:00"


def test_candle_rejects_non_numeric_field():
    with pytest.raises(ValueError):
        Candle.from_upstream({"datetime": "2024-01-05", "open": "n/a", "high": 1, "low": 1, "close": 1})


def test_candle_set_requires_values_list():
    with pytest.raises(ValueError):
        CandleSet.from_upstream("1min", {"meta": {}}, received_ms=1)


def test_derive_quote_over_sixty_bars():
    payload = series_payload("5min", count=60)
    candles = CandleSet.from_upstream("5min", payload, received_ms=1)

    quote = derive_quote(candles, 60)

    rows = payload["values"]
    assert quote.high == pytest.approx(max(float(r["high"]) for r in rows))
    assert quote.low == pytest.approx(min(float(r["low"]) for r in rows))
    # newest-first, so the chronologically oldest bar is last
    assert quote.open == pytest.approx(float(rows[-1]["open"]))
    assert quote.interval == "5min"
    assert quote.bars == 60


def test_derive_quote_uses_only_newest_window():
    payload = series_payload("1min", count=100)
    candles = CandleSet.from_upstream("1min", payload, received_ms=1)

    quote = derive_quote(candles, 60)

    window = payload["values"][:60]
    assert quote.bars == 60
    assert quote.open == pytest.approx(float(window[-1]["open"]))
    assert quote.low == pytest.approx(min(float(r["low"]) for r in window))


def test_derive_quote_with_fewer_bars_than_window():
    candles = CandleSet.from_upstream("4h", series_payload("4h", count=12), received_ms=1)
    quote = derive_quote(candles, 60)
    assert quote.bars == 12


def test_derive_quote_empty_set():
    candles = CandleSet.from_upstream("1h", {"values": []}, received_ms=1)
    assert derive_quote(candles) is None


def test_price_point_keeps_metadata():
    point = PricePoint.from_upstream("AUD/CHF", {"price": "0.5612", "extra": 1}, received_ms=5)
    assert point.price == pytest.approx(0.5612)
    assert point.to_dict() == {"symbol": "AUD/CHF", "price": 0.5612, "extra": 1}


def test_price_point_without_price():
    with pytest.raises(ValueError):
        PricePoint.from_upstream("AUD/CHF", {"status": "ok"}, received_ms=5)
