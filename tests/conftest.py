import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from core.quota import QuotaTracker  # noqa: E402
from datafeeds.upstream import UpstreamClient  # noqa: E402
from tests.test_helpers import FakeClock, FakeResponse, FakeSession, series_payload  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def quota(clock):
    return QuotaTracker(limit=7, window_ms=60_000, clock=clock)


@pytest.fixture
def session():
    fake = FakeSession()
    fake.responses["price"] = FakeResponse({"price": "0.56120"})
    fake.responses["time_series"] = lambda params: FakeResponse(series_payload(params["interval"]))
    return fake


@pytest.fixture
def client(quota, session):
    return UpstreamClient(api_key="test-key", quota=quota, session=session)


@pytest.fixture
def published():
    """Collects events handed to the scheduler's publish callback."""
    events = []

    def publish(event):
        events.append(event)
        return 0

    publish.events = events
    return publish
