from __future__ import annotations

"""
Sliding-window rate limiter for API credentials.

This is a *counting* limiter, not a token bucket: every call counts the
credential's ``api_access_logs`` rows in the trailing window (default 60 s,
lower bound inclusive) and compares against the credential's ``rate_limit``.
There is no in-process state, so any number of workers share one view.

Boundary semantics
------------------
The check runs before the current request is logged:

    remaining = max(0, rate_limit - count)
    allowed   = count <= rate_limit

so with ``rate_limit=5`` and five logged requests the next one is admitted
with ``remaining=0``; once six are logged, requests are refused until old
entries leave the window.

``reset_at`` is the start of the next wall-clock minute, which approximates
(rather than tracks) the true expiry of the oldest counted entry.

The read-count-then-decide step is not atomic with the access log write that
follows the response; concurrent bursts at the boundary can admit a few
requests more than ``rate_limit``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..clock import Clock, epoch_ms, next_minute, to_db, utcnow
from ..config import RateLimitConfig
from ..logging import get_logger
from ..storage.sqlite import Database

log = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int = 0

    @property
    def reset_ms(self) -> int:
        return epoch_ms(self.reset_at)

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until ``reset_at`` (at least 1)."""
        return max(1, int((self.reset_at - now).total_seconds() + 0.999))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_ms),
        }


class RateLimiter:
    def __init__(
        self,
        db: Database,
        config: Optional[RateLimitConfig] = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.db = db
        self.config = config or RateLimitConfig()
        self.clock = clock

    def check_and_consume(self, credential_id: int) -> RateLimitDecision:
        now = self.clock()
        row = self.db.fetch_one("SELECT rate_limit FROM api_keys WHERE id = ?", (credential_id,))
        if row is None:
            log.info("rate_limit_unknown_credential", credential_id=credential_id)
            return RateLimitDecision(allowed=False, remaining=0, reset_at=now, limit=0)

        limit = int(row["rate_limit"])
        window_start = now - timedelta(seconds=self.config.window_seconds)
        count = self.db.fetch_one(
            """
            SELECT COUNT(*) AS n FROM api_access_logs
            WHERE api_key_id = ? AND created_at >= ?
            """,
            (credential_id, to_db(window_start)),
        )["n"]

        decision = RateLimitDecision(
            allowed=count <= limit,
            remaining=max(0, limit - count),
            reset_at=next_minute(now),
            limit=limit,
        )
        if not decision.allowed:
            log.info("rate_limit_exceeded", credential_id=credential_id, count=count, limit=limit)
        return decision


__all__ = ["RateLimiter", "RateLimitDecision"]
