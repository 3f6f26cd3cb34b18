"""
UTC time helpers.

Timestamps are persisted as fixed-width ISO-8601 strings
(``YYYY-MM-DDTHH:MM:SS.ffffffZ``) so that SQLite string comparison matches
chronological order. Window queries in the rate limiter rely on this.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

_FMT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime(_FMT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, _FMT).replace(tzinfo=timezone.utc)


def next_minute(ts: datetime) -> datetime:
    """Start of the wall-clock minute after ``ts``."""
    return ts.replace(second=0, microsecond=0) + timedelta(minutes=1)


def epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


__all__ = ["Clock", "utcnow", "to_db", "from_db", "next_minute", "epoch_ms"]
