from __future__ import annotations

"""
Domain records shared by the services.

These are plain dataclasses built from SQLite rows. The HTTP layer never
returns them directly; it projects them through the pydantic views in
``models.nodes`` / ``models.api_keys`` / ``models.admins``.
"""

import json
import sqlite3
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..clock import from_db

PROTOCOLS: Tuple[str, ...] = ("http", "https", "ws", "wss")
STATUS_ONLINE = "Online"
STATUS_OFFLINE = "Offline"
STATUSES: Tuple[str, ...] = (STATUS_ONLINE, STATUS_OFFLINE)


class _Unset:
    """Marker for "leave this attribute unchanged" in :class:`NodeChanges`."""

    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# --------------------------------- Nodes -------------------------------------


@dataclass(frozen=True)
class NodeRecord:
    id: int
    name: str
    host: str
    port: int
    protocol: str
    max_connections: int
    description: Optional[str] = None
    allow_relay: bool = True
    network_name: Optional[str] = None
    network_secret: Optional[str] = None
    region: Optional[str] = None
    isp: Optional[str] = None
    qq_number: Optional[str] = None
    mail: Optional[str] = None
    status: str = STATUS_OFFLINE
    response_time: Optional[int] = None
    last_status_update: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "NodeRecord":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            host=row["host"],
            port=row["port"],
            protocol=row["protocol"],
            allow_relay=bool(row["allow_relay"]),
            network_name=row["network_name"],
            network_secret=row["network_secret"],
            max_connections=row["max_connections"],
            region=row["region"],
            isp=row["isp"],
            qq_number=row["qq_number"],
            mail=row["mail"],
            status=row["status"],
            response_time=row["response_time"],
            last_status_update=from_db(row["last_status_update"]),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )


@dataclass
class NodeDraft:
    """Input to ``NodeRegistry.create``. Required fields are checked there, not here."""

    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    max_connections: Optional[int] = None
    description: Optional[str] = None
    allow_relay: bool = True
    network_name: Optional[str] = None
    network_secret: Optional[str] = None
    region: Optional[str] = None
    isp: Optional[str] = None
    qq_number: Optional[str] = None
    mail: Optional[str] = None


@dataclass(frozen=True)
class NodeChanges:
    """
    Partial update for a node. Each attribute is either ``UNSET`` (keep the
    stored value) or the new value; ``None`` clears an optional attribute.
    Health fields are absent; they change only through status reports.
    """

    name: Any = UNSET
    description: Any = UNSET
    host: Any = UNSET
    port: Any = UNSET
    protocol: Any = UNSET
    allow_relay: Any = UNSET
    network_name: Any = UNSET
    network_secret: Any = UNSET
    max_connections: Any = UNSET
    region: Any = UNSET
    isp: Any = UNSET
    qq_number: Any = UNSET
    mail: Any = UNSET

    def assigned(self) -> Dict[str, Any]:
        """Only the attributes that were explicitly set, in declaration order."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def is_empty(self) -> bool:
        return not self.assigned()


@dataclass(frozen=True)
class NodeStatusInfo:
    node_id: int
    status: str
    response_time: Optional[int]
    last_status_update: Optional[datetime]


@dataclass(frozen=True)
class StatusHistoryEntry:
    id: int
    node_id: int
    status: str
    response_time: Optional[int]
    metadata: Optional[Dict[str, Any]]
    checked_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StatusHistoryEntry":
        raw = row["metadata"]
        return cls(
            id=row["id"],
            node_id=row["node_id"],
            status=row["status"],
            response_time=row["response_time"],
            metadata=json.loads(raw) if raw else None,
            checked_at=from_db(row["checked_at"]),
        )


# ------------------------------- Credentials ---------------------------------


def mask_key(key: str) -> str:
    """First 8 and last 8 characters with 24 asterisks between them."""
    if len(key) <= 16:
        return "*" * len(key)
    return f"{key[:8]}{'*' * 24}{key[-8:]}"


@dataclass(frozen=True)
class ApiCredential:
    id: int
    key: str
    is_active: bool
    rate_limit: int
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    @property
    def masked_key(self) -> str:
        return mask_key(self.key)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ApiCredential":
        return cls(
            id=row["id"],
            key=row["key"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            rate_limit=row["rate_limit"],
            created_by=row["created_by"],
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            last_used_at=from_db(row["last_used_at"]),
        )


@dataclass(frozen=True)
class AccessLogEntry:
    api_key_id: Optional[int]
    endpoint: str
    method: str
    ip_address: str
    status_code: int
    user_agent: Optional[str] = None
    response_time: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class AccessStats:
    total_requests: int
    successful_requests: int
    failed_requests: int
    daily: List[Tuple[str, int]] = field(default_factory=list)


# --------------------------------- Admins ------------------------------------


@dataclass(frozen=True)
class AdminAccount:
    id: int
    username: str
    password_hash: str
    email: Optional[str] = None
    qq_number: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AdminAccount":
        return cls(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            email=row["email"],
            qq_number=row["qq_number"],
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            last_login_at=from_db(row["last_login_at"]),
        )


__all__ = [
    "PROTOCOLS",
    "STATUSES",
    "STATUS_ONLINE",
    "STATUS_OFFLINE",
    "UNSET",
    "NodeRecord",
    "NodeDraft",
    "NodeChanges",
    "NodeStatusInfo",
    "StatusHistoryEntry",
    "ApiCredential",
    "AccessLogEntry",
    "AccessStats",
    "AdminAccount",
    "mask_key",
]
