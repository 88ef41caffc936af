"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def iso_in(seconds: float, start: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp `seconds` after `start` (default now), millisecond precision."""
    moment = (start or utc_now()) + timedelta(seconds=seconds)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse timestamps produced by `iso_in`."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def days_ago_ms(days: int) -> int:
    return now_ms() - days * 24 * 60 * 60 * 1000
