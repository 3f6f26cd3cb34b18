from __future__ import annotations

"""
Node Registry: durable store of relay nodes and their last-known health.

The cached ``status`` / ``response_time`` / ``last_status_update`` columns on
the node row are the single source of truth for a node's current health.
They change only through :meth:`NodeRegistry.record_status`, which also
appends one ``node_status_history`` row per call.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from ..adapters.geoip import EMPTY, GeoInfo
from ..clock import Clock, to_db, utcnow
from ..errors import ValidationError
from ..logging import get_logger
from ..models.records import (
    PROTOCOLS,
    STATUSES,
    NodeChanges,
    NodeDraft,
    NodeRecord,
    NodeStatusInfo,
    StatusHistoryEntry,
)
from ..storage.sqlite import Database

log = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_REQUIRED = ("host", "port", "protocol", "max_connections")


class GeoEnricher(Protocol):
    def lookup(self, host: Optional[str]) -> GeoInfo: ...


@dataclass(frozen=True)
class NodeFilters:
    search: Optional[str] = None
    protocol: Optional[str] = None
    status: Optional[str] = None


# ------------------------------ validation ----------------------------------


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("name is required", details={"field": "name"})
    return value.strip()


def _check_host(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("host is required", details={"field": "host"})
    return value.strip()


def _check_port(value: Any) -> int:
    if not _is_int(value) or not 1 <= value <= 65535:
        raise ValidationError("port must be an integer in 1..65535", details={"field": "port", "value": value})
    return value


def check_protocol(value: Any) -> str:
    if value not in PROTOCOLS:
        raise ValidationError(
            f"protocol must be one of {', '.join(PROTOCOLS)}",
            details={"field": "protocol", "value": value},
        )
    return value


def _check_max_connections(value: Any) -> int:
    if not _is_int(value) or value <= 0:
        raise ValidationError(
            "max_connections must be a positive integer",
            details={"field": "max_connections", "value": value},
        )
    return value


def _check_status(value: Any) -> str:
    if value not in STATUSES:
        raise ValidationError(
            f"status must be one of {', '.join(STATUSES)}",
            details={"field": "status", "value": value},
        )
    return value


def _check_response_time(value: Any) -> Optional[int]:
    if value is None:
        return None
    if not _is_int(value) or value < 0:
        raise ValidationError(
            "response_time must be a non-negative integer (ms)",
            details={"field": "response_time", "value": value},
        )
    return value


_FIELD_CHECKS = {
    "name": _check_name,
    "host": _check_host,
    "port": _check_port,
    "protocol": check_protocol,
    "max_connections": _check_max_connections,
}


def check_page(page: int, limit: Optional[int]) -> Tuple[int, int]:
    """Validate 1-based paging; ``limit`` defaults to 20 and is capped at 100."""
    if not _is_int(page) or page < 1:
        raise ValidationError("page must be >= 1", details={"field": "page", "value": page})
    if limit is None:
        limit = DEFAULT_PAGE_SIZE
    if not _is_int(limit) or limit < 1:
        raise ValidationError("limit must be >= 1", details={"field": "limit", "value": limit})
    return page, min(limit, MAX_PAGE_SIZE)


def like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


# ------------------------------- registry ------------------------------------


class NodeRegistry:
    def __init__(self, db: Database, *, geo: Optional[GeoEnricher] = None, clock: Clock = utcnow) -> None:
        self.db = db
        self.geo = geo
        self.clock = clock

    # ------------------------------- create -------------------------------

    def create(self, draft: NodeDraft) -> NodeRecord:
        name = _check_name(draft.name)
        missing = [f for f in _REQUIRED if getattr(draft, f) is None]
        if missing:
            raise ValidationError(
                f"missing required field(s): {', '.join(missing)}",
                details={"missing": missing},
            )
        host = _check_host(draft.host)
        port = _check_port(draft.port)
        protocol = check_protocol(draft.protocol)
        max_connections = _check_max_connections(draft.max_connections)

        geo = self._enrich(host)
        region = geo.region or _blank_to_none(draft.region)
        isp = geo.isp or _blank_to_none(draft.isp)

        now = to_db(self.clock())
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO nodes (
                    name, description, host, port, protocol, allow_relay,
                    network_name, network_secret, max_connections, region, isp,
                    qq_number, mail, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    _blank_to_none(draft.description),
                    host,
                    port,
                    protocol,
                    1 if draft.allow_relay else 0,
                    _blank_to_none(draft.network_name),
                    _blank_to_none(draft.network_secret),
                    max_connections,
                    region,
                    isp,
                    _blank_to_none(draft.qq_number),
                    _blank_to_none(draft.mail),
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM nodes WHERE id = ?", (cur.lastrowid,)).fetchone()
        node = NodeRecord.from_row(row)
        log.info("node_created", node_id=node.id, name=node.name, protocol=node.protocol, region=node.region)
        return node

    def _enrich(self, host: str) -> GeoInfo:
        if self.geo is None:
            return EMPTY
        try:
            return self.geo.lookup(host)
        except Exception as e:  # enrichment must never block creation
            log.warning("geo_enrichment_failed", host=host, error=str(e))
            return EMPTY

    # -------------------------------- read --------------------------------

    def get_by_id(self, node_id: int) -> Optional[NodeRecord]:
        row = self.db.fetch_one("SELECT * FROM nodes WHERE id = ?", (node_id,))
        return NodeRecord.from_row(row) if row else None

    def list(
        self,
        filters: Optional[NodeFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[NodeRecord], int]:
        filters = filters or NodeFilters()
        page, limit = check_page(page, limit)

        where: List[str] = []
        params: List[Any] = []
        search = _blank_to_none(filters.search)
        if search:
            where.append("(name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
            pattern = like_pattern(search)
            params.extend([pattern, pattern])
        if filters.protocol:
            where.append("protocol = ?")
            params.append(check_protocol(filters.protocol))
        if filters.status:
            where.append("status = ?")
            params.append(_check_status(filters.status))
        clause = f"WHERE {' AND '.join(where)}" if where else ""

        total = self.db.fetch_one(f"SELECT COUNT(*) AS n FROM nodes {clause}", params)["n"]
        rows = self.db.fetch_all(
            f"SELECT * FROM nodes {clause} ORDER BY id DESC LIMIT ? OFFSET ?",
            [*params, limit, (page - 1) * limit],
        )
        return [NodeRecord.from_row(r) for r in rows], total

    # ------------------------------- update -------------------------------

    def update(self, node_id: int, changes: NodeChanges) -> Optional[NodeRecord]:
        if changes.is_empty():
            return self.get_by_id(node_id)
        assigned = self._validate_changes(changes)

        columns = ", ".join(f"{col} = ?" for col in assigned)
        values = [*assigned.values(), to_db(self.clock()), node_id]
        with self.db.transaction() as conn:
            cur = conn.execute(f"UPDATE nodes SET {columns}, updated_at = ? WHERE id = ?", values)
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM nodes WHERE id = ?", (node_id,)).fetchone()
        log.info("node_updated", node_id=node_id, fields=sorted(assigned))
        return NodeRecord.from_row(row)

    @staticmethod
    def _validate_changes(changes: NodeChanges) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key, value in changes.assigned().items():
            check = _FIELD_CHECKS.get(key)
            if check is not None:
                out[key] = check(value)
            elif key == "allow_relay":
                if not isinstance(value, bool):
                    raise ValidationError("allow_relay must be a boolean", details={"field": key})
                out[key] = 1 if value else 0
            else:
                out[key] = _blank_to_none(value)
        return out

    # ------------------------------- delete -------------------------------

    def delete(self, node_id: int) -> bool:
        cur = self.db.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
        deleted = cur.rowcount > 0
        if deleted:
            log.info("node_deleted", node_id=node_id)
        return deleted

    # ------------------------------- status -------------------------------

    def record_status(
        self,
        node_id: int,
        status: str,
        response_time: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Overwrite the node's cached health (last writer wins) and append one
        history row, atomically. Returns False for an unknown node.
        """
        status = _check_status(status)
        response_time = _check_response_time(response_time)
        blob = json.dumps(dict(metadata), sort_keys=True) if metadata else None
        now = to_db(self.clock())

        with self.db.transaction() as conn:
            cur = conn.execute(
                "UPDATE nodes SET status = ?, response_time = ?, last_status_update = ? WHERE id = ?",
                (status, response_time, now, node_id),
            )
            if cur.rowcount == 0:
                return False
            conn.execute(
                """
                INSERT INTO node_status_history (node_id, status, response_time, metadata, checked_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (node_id, status, response_time, blob, now),
            )
        log.info("node_status_recorded", node_id=node_id, status=status, response_time=response_time)
        return True

    def get_status(self, node_id: int) -> Optional[NodeStatusInfo]:
        node = self.get_by_id(node_id)
        if node is None:
            return None
        return NodeStatusInfo(
            node_id=node.id,
            status=node.status,
            response_time=node.response_time,
            last_status_update=node.last_status_update,
        )

    def status_history(self, node_id: int, limit: Optional[int] = None) -> List[StatusHistoryEntry]:
        _, limit = check_page(1, limit)
        rows = self.db.fetch_all(
            """
            SELECT * FROM node_status_history
            WHERE node_id = ?
            ORDER BY checked_at DESC, id DESC
            LIMIT ?
            """,
            (node_id, limit),
        )
        return [StatusHistoryEntry.from_row(r) for r in rows]


__all__ = ["NodeRegistry", "NodeFilters", "GeoEnricher", "check_page", "check_protocol", "like_pattern"]
