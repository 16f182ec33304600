"""Collectors that poll upstream market data."""

from datafeeds.collectors.poll_scheduler import PollScheduler

__all__ = [
    "PollScheduler",
]
