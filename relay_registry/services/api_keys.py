from __future__ import annotations

"""
Credential Store: API keys used for public-route authentication and rate accounting.

Keys are ``key_bytes`` random bytes rendered as lowercase hex. The full key
is only ever returned by :meth:`CredentialStore.create`; listings carry the
masked form (see :func:`relay_registry.models.records.mask_key`).
"""

import hmac
import secrets
import sqlite3
from datetime import timedelta
from typing import Any, List, Optional, Tuple

from ..clock import Clock, to_db, utcnow
from ..config import ApiKeyConfig
from ..errors import ConflictError, ValidationError
from ..logging import get_logger
from ..models.records import AccessStats, ApiCredential
from ..storage.sqlite import Database
from .registry import check_page, like_pattern

log = get_logger(__name__)

MAX_STATS_DAYS = 30


class CredentialStore:
    def __init__(self, db: Database, config: Optional[ApiKeyConfig] = None, *, clock: Clock = utcnow) -> None:
        self.db = db
        self.config = config or ApiKeyConfig()
        self.clock = clock

    def _check_rate_limit(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= self.config.max_rate_limit:
            raise ValidationError(
                f"rate_limit must be an integer in 1..{self.config.max_rate_limit}",
                details={"field": "rate_limit", "value": value},
            )
        return value

    def _generate_key(self) -> str:
        return secrets.token_hex(self.config.key_bytes)

    # ------------------------------- create -------------------------------

    def create(
        self,
        description: Optional[str] = None,
        rate_limit: Optional[int] = None,
        *,
        created_by: Optional[int] = None,
    ) -> ApiCredential:
        limit = self._check_rate_limit(self.config.default_rate_limit if rate_limit is None else rate_limit)
        description = (description or "").strip() or None
        now = to_db(self.clock())

        for attempt in range(1, self.config.max_generation_attempts + 1):
            key = self._generate_key()
            try:
                with self.db.transaction() as conn:
                    cur = conn.execute(
                        """
                        INSERT INTO api_keys (key, description, is_active, rate_limit, created_by, created_at, updated_at)
                        VALUES (?, ?, 1, ?, ?, ?, ?)
                        """,
                        (key, description, limit, created_by, now, now),
                    )
                    row = conn.execute("SELECT * FROM api_keys WHERE id = ?", (cur.lastrowid,)).fetchone()
            except sqlite3.IntegrityError:
                log.warning("api_key_collision", attempt=attempt)
                continue
            cred = ApiCredential.from_row(row)
            log.info("api_key_created", api_key_id=cred.id, rate_limit=limit, created_by=created_by)
            return cred

        raise ConflictError(
            "Could not generate a unique API key",
            details={"attempts": self.config.max_generation_attempts},
        )

    # -------------------------------- read --------------------------------

    def validate(self, key: Optional[str]) -> Optional[ApiCredential]:
        """Return the active credential for ``key``, or None."""
        if not key:
            return None
        row = self.db.fetch_one("SELECT * FROM api_keys WHERE key = ? AND is_active = 1", (key,))
        if row is None or not hmac.compare_digest(row["key"], key):
            return None
        return ApiCredential.from_row(row)

    def get(self, credential_id: int) -> Optional[ApiCredential]:
        row = self.db.fetch_one("SELECT * FROM api_keys WHERE id = ?", (credential_id,))
        return ApiCredential.from_row(row) if row else None

    def list(
        self,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[ApiCredential], int]:
        page, limit = check_page(page, limit)
        where: List[str] = []
        params: List[Any] = []
        if search and search.strip():
            pattern = like_pattern(search.strip())
            where.append("(description LIKE ? ESCAPE '\\' OR key LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])
        if is_active is not None:
            where.append("is_active = ?")
            params.append(1 if is_active else 0)
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        total = self.db.fetch_one(f"SELECT COUNT(*) AS n FROM api_keys {clause}", params)["n"]
        rows = self.db.fetch_all(
            f"SELECT * FROM api_keys {clause} ORDER BY id DESC LIMIT ? OFFSET ?",
            [*params, limit, (page - 1) * limit],
        )
        return [ApiCredential.from_row(r) for r in rows], total

    # ------------------------------- update -------------------------------

    def set_active(self, credential_id: int, active: bool) -> bool:
        cur = self.db.execute(
            "UPDATE api_keys SET is_active = ?, updated_at = ? WHERE id = ?",
            (1 if active else 0, to_db(self.clock()), credential_id),
        )
        changed = cur.rowcount > 0
        if changed:
            log.info("api_key_status_changed", api_key_id=credential_id, active=active)
        return changed

    def set_rate_limit(self, credential_id: int, rate_limit: int) -> bool:
        rate_limit = self._check_rate_limit(rate_limit)
        cur = self.db.execute(
            "UPDATE api_keys SET rate_limit = ?, updated_at = ? WHERE id = ?",
            (rate_limit, to_db(self.clock()), credential_id),
        )
        changed = cur.rowcount > 0
        if changed:
            log.info("api_key_rate_limit_changed", api_key_id=credential_id, rate_limit=rate_limit)
        return changed

    def delete(self, credential_id: int) -> bool:
        # access log rows survive with api_key_id set to NULL
        cur = self.db.execute("DELETE FROM api_keys WHERE id = ?", (credential_id,))
        deleted = cur.rowcount > 0
        if deleted:
            log.info("api_key_deleted", api_key_id=credential_id)
        return deleted

    # -------------------------------- stats -------------------------------

    def access_stats(self, credential_id: int, days: int = 7) -> AccessStats:
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_STATS_DAYS:
            raise ValidationError(
                f"days must be an integer in 1..{MAX_STATS_DAYS}",
                details={"field": "days", "value": days},
            )
        since = to_db(self.clock() - timedelta(days=days))
        row = self.db.fetch_one(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN status_code < 400 THEN 1 ELSE 0 END), 0) AS ok,
                COALESCE(SUM(CASE WHEN status_code >= 400 THEN 1 ELSE 0 END), 0) AS failed
            FROM api_access_logs
            WHERE api_key_id = ? AND created_at >= ?
            """,
            (credential_id, since),
        )
        daily = self.db.fetch_all(
            """
            SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS requests
            FROM api_access_logs
            WHERE api_key_id = ? AND created_at >= ?
            GROUP BY day
            ORDER BY day DESC
            """,
            (credential_id, since),
        )
        return AccessStats(
            total_requests=row["total"],
            successful_requests=row["ok"],
            failed_requests=row["failed"],
            daily=[(r["day"], r["requests"]) for r in daily],
        )


__all__ = ["CredentialStore", "MAX_STATS_DAYS"]
