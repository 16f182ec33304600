"""Wall-clock helpers. All feed timestamps are epoch milliseconds."""

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def ms_to_iso(ts_ms: int | None) -> str | None:
    """Return ISO 8601 UTC string for an epoch-ms timestamp (None passes through)."""
    if not ts_ms:
        return None
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()
