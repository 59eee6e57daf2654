"""UTC time handling.

Importing this module pins the process timezone to UTC so job timestamps,
ledger entries and fleet idle calculations agree across processes.
"""

import os
import time
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"
if hasattr(time, "tzset"):
    time.tzset()


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Return the current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
