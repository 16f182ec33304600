"""
Rate-budgeted poll scheduler.

Decides on each fixed-period tick what to ask upstream for:
- odd ticks poll the price
- even ticks poll candles for the active timeframe
- every ``background_every``-th tick polls candles for a background timeframe,
  round-robin over the non-active ones, so a switch rarely starts cold

With the default 8.5s period that is ~7 calls/min, inside the quota of 7 and one
below the upstream's hard cap of 8. Denied or failed polls are absorbed: no
retry, no cache write, no fan-out. The next tick is the retry.
"""

import asyncio
from typing import Callable, Optional

from core.cache import PRICE_KEY, SharedStateCache, candles_key
from core.clock import now_ms
from core.events import candles_event, price_event, quote_event
from core.logging_utils import get_logger
from core.models import CandleSet, PricePoint, derive_quote
from core.timeframe import TimeframeSelector
from datafeeds.upstream import FetchResult, UpstreamClient

logger = get_logger(__name__)


class PollScheduler:
    """
    Single owner of upstream polling and cache writes.

    All upstream calls go through one asyncio lock, so exactly one request is
    in flight at a time and cache writes are serialized. A poll whose target
    (price, or candles for one timeframe) is already in flight is skipped
    rather than queued.
    """

    def __init__(
        self,
        client: UpstreamClient,
        cache: SharedStateCache,
        selector: TimeframeSelector,
        publish: Callable,  # (StreamEvent) -> int
        interval_s: float = 8.5,
        bootstrap_delay_s: float = 3.0,
        background_every: int = 6,
        freshness_s: float = 15.0,
        quote_bars: int = 60,
        clock: Callable[[], int] = now_ms,
    ):
        self.client = client
        self.cache = cache
        self.selector = selector
        self.publish = publish
        self.interval_s = interval_s
        self.bootstrap_delay_s = bootstrap_delay_s
        self.background_every = background_every
        self.freshness_ms = int(freshness_s * 1000)
        self.quote_bars = quote_bars
        self._clock = clock

        self.tick_count = 0
        self._bg_index = 0
        self._upstream_lock = asyncio.Lock()
        self._inflight: set[str] = set()

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._oob_tasks: set[asyncio.Task] = set()
        self._tick_tasks: set[asyncio.Task] = set()

        # Stats
        self.polls_price = 0
        self.polls_candles = 0
        self.polls_background = 0
        self.polls_out_of_band = 0
        self.failures = 0
        self.skipped_inflight = 0
        self.errors = 0

    # Tick planning

    def plan_tick(self, tick: int) -> tuple[str, Optional[str]]:
        """Return ("price", None) or ("candles", timeframe) for tick number ``tick``."""
        if tick % 2 == 1:
            return "price", None
        if self.background_every and tick % self.background_every == 0:
            return "candles", self.next_background_timeframe()
        return "candles", self.selector.active

    def next_background_timeframe(self) -> str:
        """Round-robin pick over the timeframes that are not active right now."""
        others = self.selector.others()
        if not others:
            return self.selector.active
        tf = others[self._bg_index % len(others)]
        self._bg_index += 1
        return tf

    async def tick(self) -> bool:
        """Advance the tick counter and run its poll. Returns True if the cache changed."""
        self.tick_count += 1
        kind, timeframe = self.plan_tick(self.tick_count)
        if kind == "price":
            return await self.poll_price()
        if timeframe != self.selector.active:
            self.polls_background += 1
        return await self.poll_candles(timeframe)

    # Polls

    async def poll_price(self) -> bool:
        result = await self._fetch(PRICE_KEY, self.client.fetch_price)
        if result is None or not result.ok:
            return False

        received = self._stamp(PRICE_KEY)
        try:
            point = PricePoint.from_upstream(self.client.symbol, result.body, received)
        except ValueError as e:
            self.failures += 1
            logger.warning("[POLL] Discarding price payload: %s", e)
            return False

        entry = self.cache.put_price(point, received)
        self.polls_price += 1
        self.publish(price_event(point, entry.updated_ms))
        return True

    async def poll_candles(self, timeframe: str) -> bool:
        result = await self._fetch(candles_key(timeframe), self.client.fetch_candles, timeframe)
        if result is None or not result.ok:
            return False

        received = self._stamp(candles_key(timeframe))
        try:
            candle_set = CandleSet.from_upstream(timeframe, result.body, received)
        except ValueError as e:
            self.failures += 1
            logger.warning("[POLL] Discarding %s candles payload: %s", timeframe, e)
            return False

        entry = self.cache.put_candles(candle_set, received)
        self.polls_candles += 1

        # Only the foreground timeframe drives the quote
        if timeframe == self.selector.active:
            quote = derive_quote(candle_set, self.quote_bars)
            if quote is not None:
                quote_entry = self.cache.put_quote(quote, received)
                self.publish(quote_event(quote, quote_entry.updated_ms))

        self.publish(candles_event(candle_set, entry.updated_ms))
        return True

    def _stamp(self, key: str) -> int:
        """Receipt time for a write to ``key``, never earlier than the entry it replaces."""
        now = self._clock()
        previous = self.cache.get(key)
        if previous is not None and previous.updated_ms > now:
            return previous.updated_ms
        return now

    async def _fetch(self, target: str, func: Callable, *args) -> Optional[FetchResult]:
        """Run one upstream call under the scheduler lock; None if the target was busy."""
        if target in self._inflight:
            self.skipped_inflight += 1
            logger.debug("[POLL] %s already in flight, skipping", target)
            return None
        self._inflight.add(target)
        try:
            async with self._upstream_lock:
                result = await asyncio.to_thread(func, *args)
        finally:
            self._inflight.discard(target)
        if not result.ok:
            self.failures += 1
        return result

    # Timeframe switching

    def set_active_timeframe(self, timeframe: str) -> Optional[asyncio.Task]:
        """
        Switch the foreground timeframe. Later ticks use it straight away.

        If the new timeframe has no cached candles, or they are older than the
        freshness threshold, one out-of-band poll is started immediately and its
        task returned. Must be called from the event loop.
        """
        if not self.selector.set(timeframe):
            return None
        logger.info("[POLL] Active timeframe -> %s", timeframe)

        age = self.cache.age_ms(candles_key(timeframe), self._clock())
        if age is not None and age <= self.freshness_ms:
            return None

        self.polls_out_of_band += 1
        task = asyncio.create_task(self._guarded(self.poll_candles(timeframe), f"switch:{timeframe}"))
        self._oob_tasks.add(task)
        task.add_done_callback(self._oob_tasks.discard)
        return task

    # Lifecycle

    async def start(self):
        """Start the bootstrap polls and the tick loop."""
        if self._running:
            return
        self._running = True
        self._bootstrap_task = asyncio.create_task(self._bootstrap())
        self._loop_task = asyncio.create_task(self._tick_loop())
        logger.info(
            "[POLL] Started: tick every %ss, price/candles/bg-TF cycling, quota %s/min",
            self.interval_s, self.client.quota.limit,
        )

    async def stop(self):
        """Cancel the loop and any pending polls."""
        self._running = False
        tasks = [t for t in (self._loop_task, self._bootstrap_task, *self._tick_tasks, *self._oob_tasks) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tick_tasks.clear()
        self._oob_tasks.clear()
        self._loop_task = None
        self._bootstrap_task = None

    @property
    def running(self) -> bool:
        return self._running

    async def _bootstrap(self):
        """Populate the cache without waiting a full tick cycle."""
        await self._guarded(self.poll_price(), "bootstrap:price")
        await asyncio.sleep(self.bootstrap_delay_s)
        await self._guarded(self.poll_candles(self.selector.active), "bootstrap:candles")

    async def _tick_loop(self):
        """
        Fire a tick every ``interval_s`` against a fixed deadline. Each tick
        runs as its own task, so a slow upstream call never delays the next
        one; overlap is absorbed by the upstream lock and the in-flight skip.
        """
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while self._running:
            next_at += self.interval_s
            try:
                await asyncio.sleep(max(next_at - loop.time(), 0))
            except asyncio.CancelledError:
                break
            if not self._running:
                break
            task = asyncio.create_task(self._run_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def _run_tick(self):
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[POLL] Tick %s error: %s", self.tick_count, e, exc_info=True)
            self.errors += 1

    async def _guarded(self, coro, label: str) -> bool:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[POLL] %s error: %s", label, e, exc_info=True)
            self.errors += 1
            return False

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "tick": self.tick_count,
            "interval_s": self.interval_s,
            "polls_price": self.polls_price,
            "polls_candles": self.polls_candles,
            "polls_background": self.polls_background,
            "polls_out_of_band": self.polls_out_of_band,
            "failures": self.failures,
            "skipped_inflight": self.skipped_inflight,
            "errors": self.errors,
        }
