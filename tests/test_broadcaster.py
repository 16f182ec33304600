"""Tests for subscriber fan-out, bootstrap and pruning."""

import asyncio
import json

import pytest

from core.broadcaster import Broadcaster, Subscriber, SubscriberClosed
from core.cache import SharedStateCache
from core.events import KEEPALIVE_LINE, StreamEvent
from core.models import CandleSet, PricePoint, derive_quote
from core.timeframe import TimeframeSelector
from tests.test_helpers import series_payload


def decode(line: str) -> dict:
    assert line.startswith("data: ") and line.endswith("\n\n")
    return json.loads(line[len("data: "):])


def filled_cache() -> SharedStateCache:
    cache = SharedStateCache()
    cache.put_price(PricePoint("AUD/CHF", 0.5612, 1_000), now=1_000)
    one_min = CandleSet.from_upstream("1min", series_payload("1min", count=5), 2_000)
    four_h = CandleSet.from_upstream("4h", series_payload("4h", count=5), 2_500)
    cache.put_candles(four_h, now=2_500)
    cache.put_candles(one_min, now=2_000)
    cache.put_quote(derive_quote(one_min), now=2_000)
    return cache


def test_bootstrap_snapshot_precedes_live_updates():
    broadcaster = Broadcaster(filled_cache(), TimeframeSelector())

    subscriber = broadcaster.subscribe()
    broadcaster.publish(StreamEvent(type="price", data={"price": 0.57}, ts=9_000))

    frames = [decode(line) for line in subscriber.drain()]
    assert [(f["type"], f.get("interval")) for f in frames] == [
        ("price", None),
        ("quote", None),
        ("candles", "1min"),
        ("candles", "4h"),
        ("price", None),
    ]
    assert frames[0]["ts"] == 1_000
    assert frames[0]["data"]["price"] == 0.5612
    assert frames[-1]["ts"] == 9_000


def test_bootstrap_active_timeframe_only():
    selector = TimeframeSelector(active="4h")
    broadcaster = Broadcaster(filled_cache(), selector, bootstrap_all_timeframes=False)

    frames = [decode(line) for line in broadcaster.subscribe().drain()]

    assert [f.get("interval") for f in frames if f["type"] == "candles"] == ["4h"]


def test_bootstrap_on_empty_cache_is_empty():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    assert broadcaster.subscribe().drain() == []
    assert len(broadcaster) == 1


def test_publish_reaches_every_subscriber():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    subs = [broadcaster.subscribe() for _ in range(3)]

    delivered = broadcaster.publish(StreamEvent(type="quote", data={"high": 1.0}, ts=5))

    assert delivered == 3
    for sub in subs:
        assert [decode(line)["type"] for line in sub.drain()] == ["quote"]


def test_closed_subscriber_is_pruned_on_publish():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    alive = broadcaster.subscribe()
    dead = broadcaster.subscribe()
    dead.closed = True

    delivered = broadcaster.publish(StreamEvent(type="price", data={}, ts=1))

    assert delivered == 1
    assert dead not in broadcaster
    assert alive in broadcaster
    assert broadcaster.pruned == 1

    broadcaster.publish(StreamEvent(type="price", data={}, ts=2))
    assert dead.drain() == []
    assert len(alive.drain()) == 2


def test_full_queue_subscriber_is_pruned():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector(), max_queue=1)
    slow = broadcaster.subscribe()

    broadcaster.publish(StreamEvent(type="price", data={}, ts=1))
    assert slow in broadcaster
    broadcaster.publish(StreamEvent(type="price", data={}, ts=2))

    assert slow not in broadcaster
    assert slow.closed
    assert [decode(line)["ts"] for line in slow.drain()] == [1]


def test_unsubscribe():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    sub = broadcaster.subscribe()

    assert broadcaster.unsubscribe(sub) is True
    assert broadcaster.unsubscribe(sub) is False
    assert len(broadcaster) == 0
    with pytest.raises(SubscriberClosed):
        sub.push("data: {}\n\n")


def test_subscriber_ids_are_unique():
    assert Subscriber().id != Subscriber().id


@pytest.mark.asyncio
async def test_stream_yields_bootstrap_then_keepalive():
    broadcaster = Broadcaster(filled_cache(), TimeframeSelector())
    sub = broadcaster.subscribe()
    stream = broadcaster.stream(sub, keepalive_s=0.01)

    frames = [await stream.__anext__() for _ in range(4)]
    assert [decode(f)["type"] for f in frames] == ["price", "quote", "candles", "candles"]

    assert await stream.__anext__() == KEEPALIVE_LINE

    await stream.aclose()
    assert sub not in broadcaster


@pytest.mark.asyncio
async def test_stream_delivers_published_event():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    sub = broadcaster.subscribe()
    stream = broadcaster.stream(sub, keepalive_s=5)

    nxt = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    broadcaster.publish(StreamEvent(type="candles", data={"values": []}, ts=7, interval="5min"))

    frame = decode(await asyncio.wait_for(nxt, timeout=1))
    assert frame == {"type": "candles", "interval": "5min", "data": {"values": []}, "ts": 7}
    await stream.aclose()


@pytest.mark.asyncio
async def test_stream_ends_when_subscriber_pruned():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    sub = broadcaster.subscribe()
    stream = broadcaster.stream(sub, keepalive_s=5)

    broadcaster.unsubscribe(sub)

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), timeout=1)


def test_unknown_event_type_rejected():
    with pytest.raises(ValueError):
        StreamEvent(type="trade", data={}, ts=1)


@pytest.mark.asyncio
async def test_stream_registers_on_first_iteration():
    broadcaster = Broadcaster(filled_cache(), TimeframeSelector())

    unstarted = broadcaster.stream(keepalive_s=5)
    assert len(broadcaster) == 0
    await unstarted.aclose()
    assert len(broadcaster) == 0

    stream = broadcaster.stream(keepalive_s=5)
    first = decode(await stream.__anext__())
    assert first["type"] == "price"
    assert len(broadcaster) == 1

    await stream.aclose()
    assert len(broadcaster) == 0


@pytest.mark.asyncio
async def test_keepalive_fires_on_schedule_under_steady_traffic():
    broadcaster = Broadcaster(SharedStateCache(), TimeframeSelector())
    sub = broadcaster.subscribe()
    stream = broadcaster.stream(sub, keepalive_s=0.05)

    async def chatter():
        for i in range(100):
            broadcaster.publish(StreamEvent(type="price", data={}, ts=i))
            await asyncio.sleep(0.01)

    publisher = asyncio.create_task(chatter())
    try:
        frames = []
        while KEEPALIVE_LINE not in frames:
            frames.append(await asyncio.wait_for(stream.__anext__(), timeout=1))
    finally:
        publisher.cancel()
        await stream.aclose()

    # Live frames kept arriving faster than the keep-alive period
    assert len(frames) > 1
    assert frames[-1] == KEEPALIVE_LINE
