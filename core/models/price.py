"""Latest traded price for the relayed instrument."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PricePoint:
    symbol: str
    price: float
    received_ms: int  # server receipt time, not the upstream's
    meta: dict = field(default_factory=dict)

    @classmethod
    def from_upstream(cls, symbol: str, payload: dict, received_ms: int) -> "PricePoint":
        raw = payload.get("price")
        try:
            price = float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"price payload has no numeric price: {raw!r}") from None
        meta = {k: v for k, v in payload.items() if k != "price"}
        return cls(symbol=symbol, price=price, received_ms=received_ms, meta=meta)

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "price": self.price, **self.meta}
