"""Typed data models for the quote relay."""

from core.models.candle import Candle, CandleSet
from core.models.price import PricePoint
from core.models.quote import Quote, derive_quote

__all__ = [
    "Candle",
    "CandleSet",
    "PricePoint",
    "Quote",
    "derive_quote",
]
