"""
FastAPI server for the quote relay.

Serves the SSE push stream and read endpoints straight from the shared cache.
Upstream polling runs on its own timer inside the feed; requests never call
upstream except through a timeframe switch.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse, StreamingResponse
import uvicorn

from core.clock import ms_to_iso
from core.feed import FeedService
from core.logging_utils import get_logger

logger = get_logger(__name__)

# Feed reference (set by run.py on startup)
_feed: Optional[FeedService] = None

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "X-Accel-Buffering": "no",
}


def set_feed(feed: Optional[FeedService]):
    """Called on startup to share the feed with the request handlers."""
    global _feed
    _feed = feed


def get_feed() -> Optional[FeedService]:
    return _feed


def _not_running() -> dict:
    return {"error": "Feed not running"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    feed = _feed
    if feed is not None:
        await feed.start()
    try:
        yield
    finally:
        if feed is not None:
            await feed.stop()


app = FastAPI(title="Quote Relay API", lifespan=lifespan)


@app.get("/api/stream")
async def stream():
    """Server-Sent Events: bootstrap snapshot, then live updates and keep-alives."""
    if _feed is None:
        return JSONResponse(_not_running(), status_code=503)
    # Registers on the first pull of the body, not before
    return StreamingResponse(
        _feed.broadcaster.stream(keepalive_s=_feed.config.keepalive_s),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.get("/api/price")
async def get_price():
    if _feed is None:
        return _not_running()
    entry = _feed.cache.price()
    return entry.value.to_dict() if entry else {"error": "Loading"}


@app.get("/api/quote")
async def get_quote():
    if _feed is None:
        return _not_running()
    entry = _feed.cache.quote()
    return entry.value.to_dict() if entry else {"error": "Loading"}


@app.get("/api/candles")
async def get_candles(interval: Optional[str] = Query(None, description="Timeframe, e.g. 1min,5min,1h")):
    """Cached candles for ``interval``; asking for a new interval makes it the active one."""
    if _feed is None:
        return _not_running()
    tf = interval or _feed.config.default_timeframe
    if tf not in _feed.selector.timeframes:
        return JSONResponse(
            {"error": f"Unknown interval {tf!r}", "allowed": list(_feed.selector.timeframes)},
            status_code=400,
        )
    if tf != _feed.selector.active:
        _feed.scheduler.set_active_timeframe(tf)
    entry = _feed.cache.candles(tf)
    return entry.value.to_dict() if entry else {"error": "Loading..."}


@app.get("/api/status")
async def get_status():
    """Quota usage, subscriber count and cache freshness."""
    if _feed is None:
        return _not_running()
    status = _feed.status()
    status["last_update_iso"] = ms_to_iso(status["last_update"])
    return status


@app.get("/health")
async def health_check():
    """Liveness only; independent of upstream health."""
    return {"status": "ok"}


def run_server(host: str = "0.0.0.0", port: int = 3000, log_level: str = "warning"):
    """Run the web server (blocking)."""
    uvicorn.run(app, host=host, port=port, log_level=log_level)
