"""
Fan-out of stream events to connected push subscribers.

Each subscriber owns a bounded queue drained by its HTTP stream. Publishing
never waits on a slow client: a push that cannot be queued drops that
subscriber from the registry on the spot.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
from typing import AsyncIterator, Optional

from core.cache import SharedStateCache
from core.events import KEEPALIVE_LINE, StreamEvent, candles_event, price_event, quote_event
from core.logging_utils import get_logger
from core.timeframe import TimeframeSelector

logger = get_logger(__name__)

_ids = itertools.count(1)


class SubscriberClosed(Exception):
    """Push attempted on a subscriber that has already gone away."""


class Subscriber:
    """One live push channel."""

    def __init__(self, max_queue: int = 256):
        self.id = next(_ids)
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_queue)
        self.closed = False
        self.sent = 0

    def push(self, line: str) -> None:
        """Queue one frame. Raises SubscriberClosed or asyncio.QueueFull."""
        if self.closed:
            raise SubscriberClosed(f"subscriber {self.id} is closed")
        self.queue.put_nowait(line)
        self.sent += 1

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.queue.put_nowait(None)  # wake the stream so it can exit
        except asyncio.QueueFull:
            pass

    def drain(self) -> list[str]:
        """Pop everything currently queued (testing and shutdown helper)."""
        items = []
        while not self.queue.empty():
            item = self.queue.get_nowait()
            if item is not None:
                items.append(item)
        return items

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, closed={self.closed})"


class Broadcaster:
    """Registry of subscribers with bootstrap-on-subscribe and self-pruning publish."""

    def __init__(
        self,
        cache: SharedStateCache,
        selector: TimeframeSelector,
        bootstrap_all_timeframes: bool = True,
        max_queue: int = 256,
    ):
        self.cache = cache
        self.selector = selector
        self.bootstrap_all_timeframes = bootstrap_all_timeframes
        self.max_queue = max_queue
        self._subscribers: set[Subscriber] = set()
        self._lock = threading.Lock()

        # Stats
        self.published = 0
        self.pruned = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __contains__(self, subscriber: Subscriber) -> bool:
        with self._lock:
            return subscriber in self._subscribers

    def bootstrap_events(self) -> list[StreamEvent]:
        """Current cached values as events: price, quote, then candle sets."""
        events = []
        price = self.cache.price()
        if price is not None:
            events.append(price_event(price.value, price.updated_ms))
        quote = self.cache.quote()
        if quote is not None:
            events.append(quote_event(quote.value, quote.updated_ms))

        if self.bootstrap_all_timeframes:
            timeframes = self.cache.cached_timeframes(order=self.selector.timeframes)
        else:
            timeframes = [self.selector.active]
        for tf in timeframes:
            entry = self.cache.candles(tf)
            if entry is not None:
                events.append(candles_event(entry.value, entry.updated_ms))
        return events

    def subscribe(self) -> Subscriber:
        """Register a new channel with its bootstrap snapshot already queued."""
        subscriber = Subscriber(max_queue=self.max_queue)
        # Holding the lock keeps publish() out until the snapshot is queued
        with self._lock:
            for event in self.bootstrap_events():
                try:
                    subscriber.push(event.to_sse())
                except asyncio.QueueFull:
                    logger.warning("[SSE] Bootstrap for subscriber %s truncated (queue full)", subscriber.id)
                    break
            self._subscribers.add(subscriber)
            count = len(self._subscribers)
        logger.info("[SSE] Subscriber %s connected (%s live)", subscriber.id, count)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Remove a subscriber. Returns True if it was registered."""
        with self._lock:
            removed = subscriber in self._subscribers
            self._subscribers.discard(subscriber)
            count = len(self._subscribers)
        subscriber.close()
        if removed:
            logger.info("[SSE] Subscriber %s disconnected (%s live)", subscriber.id, count)
        return removed

    def publish(self, event: StreamEvent) -> int:
        """Push ``event`` to every subscriber; returns how many accepted it."""
        line = event.to_sse()
        with self._lock:
            snapshot = list(self._subscribers)
            dead = []
            for subscriber in snapshot:
                try:
                    subscriber.push(line)
                except (SubscriberClosed, asyncio.QueueFull) as e:
                    dead.append((subscriber, e))
            for subscriber, _ in dead:
                self._subscribers.discard(subscriber)
            self.published += 1
        for subscriber, e in dead:
            subscriber.close()
            self.pruned += 1
            logger.info("[SSE] Pruned subscriber %s: %s", subscriber.id, type(e).__name__)
        return len(snapshot) - len(dead)

    async def stream(
        self, subscriber: Optional[Subscriber] = None, keepalive_s: float = 25.0
    ) -> AsyncIterator[str]:
        """
        Yield queued frames for one subscriber, with a keep-alive comment every
        ``keepalive_s`` on the subscriber's own timer, whatever the traffic.

        Without ``subscriber`` a new one is registered on first iteration, so
        a client that goes away before the body starts never occupies the
        registry. Unsubscribes when the consumer stops iterating (client gone)
        or the subscriber is pruned.
        """
        if subscriber is None:
            subscriber = self.subscribe()
        loop = asyncio.get_running_loop()
        next_keepalive = loop.time() + keepalive_s
        try:
            while not subscriber.closed:
                try:
                    line = await asyncio.wait_for(
                        subscriber.queue.get(), timeout=max(next_keepalive - loop.time(), 0)
                    )
                except asyncio.TimeoutError:
                    line = KEEPALIVE_LINE
                    next_keepalive += keepalive_s
                    if next_keepalive <= loop.time():
                        next_keepalive = loop.time() + keepalive_s
                if line is None:
                    break
                yield line
        finally:
            self.unsubscribe(subscriber)

    def close_all(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.close()

    def get_stats(self) -> dict:
        return {
            "subscribers": len(self),
            "published": self.published,
            "pruned": self.pruned,
        }
