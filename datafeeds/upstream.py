"""
Twelve Data REST client gated by the rolling quota.

Every request first takes a quota credit; a denied credit means no network
call at all. Non-success outcomes are returned as values, never raised, so the
scheduler can absorb them and carry on.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import requests

from core.logging_utils import get_logger
from core.quota import QuotaTracker

logger = get_logger(__name__)

PRICE = "price"
TIME_SERIES = "time_series"
KINDS = (PRICE, TIME_SERIES)


class FetchOutcome(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"        # self-imposed, no call was made
    REJECTED = "rejected"                # upstream answered with status=error
    TRANSPORT_ERROR = "transport_error"  # timeout, connection, HTTP status, bad body


@dataclass(frozen=True)
class FetchResult:
    outcome: FetchOutcome
    kind: str
    body: Optional[dict] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is FetchOutcome.OK


class UpstreamClient:
    """Single-request client for the price and time_series endpoints."""

    def __init__(
        self,
        api_key: str,
        quota: QuotaTracker,
        symbol: str = "AUD/CHF",
        base_url: str = "https://api.twelvedata.com",
        timeout_s: float = 10.0,
        outputsize: int = 100,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.quota = quota
        self.symbol = symbol
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.outputsize = outputsize
        self._session = session or requests.Session()

        # Stats
        self.requests_sent = 0
        self.rate_limited = 0
        self.rejected = 0
        self.transport_errors = 0

    def fetch(self, kind: str, params: dict[str, Any], label: str = "") -> FetchResult:
        """Issue one categorized request. Blocking; callers run it off the event loop."""
        if kind not in KINDS:
            raise ValueError(f"unknown upstream request kind {kind!r}")
        label = label or kind

        if not self.quota.try_admit():
            self.rate_limited += 1
            logger.debug("[API] %s skipped: quota %s/%s used", label, self.quota.used(), self.quota.limit)
            return FetchResult(FetchOutcome.RATE_LIMITED, kind, detail="local quota exhausted")

        self.requests_sent += 1
        query = dict(params)
        query["apikey"] = self.api_key
        try:
            resp = self._session.get(f"{self.base_url}/{kind}", params=query, timeout=self.timeout_s)
        except requests.RequestException as e:
            # Timeouts and connection errors
            return self._transport_error(kind, label, self._redact(str(e)))

        # The body is read before the HTTP status: upstream errors carry
        # status=error in JSON, sometimes with a 4xx/5xx code as well
        body, parse_error = None, ""
        try:
            body = resp.json()
        except ValueError as e:
            parse_error = f"malformed body: {e}"

        if isinstance(body, dict) and body.get("status") == "error":
            self.rejected += 1
            message = str(body.get("message") or "unknown upstream error")
            logger.warning("[API] %s: %s", label, message)
            return FetchResult(FetchOutcome.REJECTED, kind, body=body, detail=message)

        try:
            resp.raise_for_status()
        except requests.RequestException as e:
            return self._transport_error(kind, label, self._redact(str(e)))

        if parse_error:
            return self._transport_error(kind, label, parse_error)
        if not isinstance(body, dict):
            return self._transport_error(kind, label, f"unexpected body type {type(body).__name__}")

        return FetchResult(FetchOutcome.OK, kind, body=body)

    def fetch_price(self) -> FetchResult:
        return self.fetch(PRICE, {"symbol": self.symbol}, label="price")

    def fetch_candles(self, interval: str) -> FetchResult:
        params = {"symbol": self.symbol, "interval": interval, "outputsize": self.outputsize}
        return self.fetch(TIME_SERIES, params, label=f"candles_{interval}")

    def close(self) -> None:
        self._session.close()

    def get_stats(self) -> dict:
        return {
            "requests_sent": self.requests_sent,
            "rate_limited": self.rate_limited,
            "rejected": self.rejected,
            "transport_errors": self.transport_errors,
        }

    def _transport_error(self, kind: str, label: str, detail: str) -> FetchResult:
        self.transport_errors += 1
        logger.warning("[ERR] %s: %s", label, detail)
        return FetchResult(FetchOutcome.TRANSPORT_ERROR, kind, detail=detail)

    def _redact(self, text: str) -> str:
        # requests puts the full URL, apikey included, into HTTPError messages
        if self.api_key:
            text = text.replace(self.api_key, "***")
        return text
