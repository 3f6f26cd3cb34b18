from __future__ import annotations

"""
Access Logger: one ``api_access_logs`` row per completed API-key request.

These rows are what the rate limiter counts. Logging is fire-and-forget:
a failure is reported to the application log and swallowed, never raised
into the request that is being recorded.
"""

from typing import Optional

from ..clock import Clock, to_db, utcnow
from ..logging import get_logger
from ..models.records import AccessLogEntry
from ..storage.sqlite import Database

log = get_logger(__name__)


class AccessLogger:
    def __init__(self, db: Database, *, clock: Clock = utcnow) -> None:
        self.db = db
        self.clock = clock

    def log(self, entry: AccessLogEntry) -> None:
        """Insert the access row and bump the credential's ``last_used_at``."""
        ts = to_db(entry.created_at or self.clock())
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO api_access_logs (
                        api_key_id, ip_address, endpoint, method, user_agent,
                        status_code, response_time, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.api_key_id,
                        entry.ip_address,
                        entry.endpoint,
                        entry.method,
                        _truncate(entry.user_agent, 512),
                        entry.status_code,
                        entry.response_time,
                        ts,
                    ),
                )
                if entry.api_key_id is not None:
                    conn.execute("UPDATE api_keys SET last_used_at = ? WHERE id = ?", (ts, entry.api_key_id))
        except Exception as e:  # never propagate
            log.warning(
                "access_log_write_failed",
                api_key_id=entry.api_key_id,
                endpoint=entry.endpoint,
                error=str(e),
                exc_type=e.__class__.__name__,
            )


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    return value[:limit]


__all__ = ["AccessLogger"]
