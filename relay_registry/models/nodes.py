from __future__ import annotations

"""
Node request/response models.

One canonical :class:`~relay_registry.models.records.NodeRecord` is projected
into one of three views depending on who is asking:

- ``AdminNodeView``: every field, including the network secret and contacts
- ``PublicNodeView``: what an API client may see about a node
- ``PeerView``     : the connection details handed out by ``GET /peers``

Request bodies are loose (everything optional) so that missing
or out-of-range values are reported by the registry's own validation with a
400, not by request parsing.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .common import PageMeta
from .records import NodeChanges, NodeDraft


class _FromRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ----------------------------------- views -----------------------------------


class PublicNodeView(_FromRecord):
    id: int
    name: str
    description: Optional[str] = None
    host: str
    port: int
    protocol: str
    allow_relay: bool
    network_name: Optional[str] = None
    max_connections: int
    region: Optional[str] = None


class AdminNodeView(PublicNodeView):
    network_secret: Optional[str] = None
    isp: Optional[str] = None
    qq_number: Optional[str] = None
    mail: Optional[str] = None
    status: str
    response_time: Optional[int] = None
    last_status_update: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PeerView(_FromRecord):
    id: int
    name: str
    host: str
    port: int
    protocol: str
    network_name: Optional[str] = None
    region: Optional[str] = None
    status: str
    response_time: Optional[int] = None


class AdminNodeList(BaseModel):
    items: List[AdminNodeView]
    meta: PageMeta


class PublicNodeList(BaseModel):
    items: List[PublicNodeView]
    meta: PageMeta


# ---------------------------------- requests ---------------------------------


class NodeCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    allow_relay: bool = True
    network_name: Optional[str] = None
    network_secret: Optional[str] = None
    max_connections: Optional[int] = None
    region: Optional[str] = None
    qq_number: Optional[str] = None
    mail: Optional[str] = None

    def to_draft(self) -> NodeDraft:
        return NodeDraft(**self.model_dump())


class NodeUpdate(BaseModel):
    """Only the keys present in the request body are changed; ``null`` clears."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    description: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    protocol: Optional[str] = None
    allow_relay: Optional[bool] = None
    network_name: Optional[str] = None
    network_secret: Optional[str] = None
    max_connections: Optional[int] = None
    region: Optional[str] = None
    isp: Optional[str] = None
    qq_number: Optional[str] = None
    mail: Optional[str] = None

    def to_changes(self) -> NodeChanges:
        return NodeChanges(**{name: getattr(self, name) for name in self.model_fields_set})


class StatusUpdate(BaseModel):
    status: str = Field(..., description='"Online" or "Offline"')
    response_time: Optional[int] = Field(None, description="Measured latency in ms")
    metadata: Optional[Dict[str, Any]] = None


class NodeStatusView(BaseModel):
    node_id: int
    status: str
    response_time: Optional[int] = None
    last_status_update: Optional[datetime] = None


class StatusHistoryView(_FromRecord):
    id: int
    node_id: int
    status: str
    response_time: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    checked_at: datetime


__all__ = [
    "PublicNodeView",
    "AdminNodeView",
    "PeerView",
    "AdminNodeList",
    "PublicNodeList",
    "NodeCreate",
    "NodeUpdate",
    "StatusUpdate",
    "NodeStatusView",
    "StatusHistoryView",
]
