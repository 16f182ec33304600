"""Wires the relay components together for one process."""

from typing import Optional

from core.broadcaster import Broadcaster
from core.cache import SharedStateCache
from core.config import Settings, settings as default_settings
from core.quota import QuotaTracker
from core.timeframe import TimeframeSelector
from datafeeds.collectors.poll_scheduler import PollScheduler
from datafeeds.upstream import UpstreamClient


class FeedService:
    """Owns the quota, client, cache, selector, broadcaster and scheduler."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[UpstreamClient] = None,
        quota: Optional[QuotaTracker] = None,
    ):
        self.config = config or default_settings
        cfg = self.config

        if quota is None:
            quota = client.quota if client is not None else QuotaTracker(
                limit=cfg.quota_limit, window_ms=cfg.quota_window_ms
            )
        self.quota = quota
        self.client = client or UpstreamClient(
            api_key=cfg.twelve_data_key,
            quota=self.quota,
            symbol=cfg.symbol,
            base_url=cfg.upstream_base_url,
            timeout_s=cfg.request_timeout_s,
            outputsize=cfg.candle_outputsize,
        )
        self.cache = SharedStateCache()
        self.selector = TimeframeSelector(cfg.timeframes, active=cfg.default_timeframe)
        self.broadcaster = Broadcaster(
            self.cache,
            self.selector,
            bootstrap_all_timeframes=cfg.bootstrap_all_timeframes,
            max_queue=cfg.subscriber_queue_size,
        )
        self.scheduler = PollScheduler(
            self.client,
            self.cache,
            self.selector,
            publish=self.broadcaster.publish,
            interval_s=cfg.poll_interval_s,
            bootstrap_delay_s=cfg.bootstrap_delay_s,
            background_every=cfg.background_every,
            freshness_s=cfg.freshness_s,
            quote_bars=cfg.quote_bars,
        )

    async def start(self):
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        self.broadcaster.close_all()
        self.client.close()

    def status(self) -> dict:
        """Live quota, subscriber and cache state for the status endpoint."""
        last_update = self.cache.last_update
        return {
            "symbol": self.client.symbol,
            "api_calls_last_min": self.quota.used(),
            "api_limit": self.quota.limit,
            "quota": self.quota.get_stats(),
            "sse_clients": len(self.broadcaster),
            "active_timeframe": self.selector.active,
            "last_update": last_update or None,
            "cached_timeframes": self.cache.cached_timeframes(order=self.selector.timeframes),
            "scheduler": self.scheduler.get_stats(),
            "upstream": self.client.get_stats(),
            "broadcaster": self.broadcaster.get_stats(),
        }
