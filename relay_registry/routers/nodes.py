from __future__ import annotations

"""
Nodes Router

Endpoints:
  - POST   /nodes                         : register a node (admin; GeoIP enriched)
  - GET    /nodes                         : list nodes (admin or API key)
  - GET    /nodes/{id}                    : node detail (admin or API key)
  - PUT    /nodes/{id}                    : partial update (admin)
  - DELETE /nodes/{id}                    : delete node and its history (admin)
  - GET    /nodes/{id}/status             : cached current status (admin)
  - PUT    /nodes/{id}/status             : report status (admin)
  - GET    /nodes/{id}/status/history     : status reports, newest first (admin)

Read routes project the node by caller: admins get ``AdminNodeView``,
API clients get ``PublicNodeView``.
"""

from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, Request, status

from ..deps import get_services
from ..errors import NotFound
from ..logging import get_logger
from ..models.common import Message, PageMeta
from ..models.nodes import (
    AdminNodeList,
    AdminNodeView,
    NodeCreate,
    NodeStatusView,
    NodeUpdate,
    PublicNodeList,
    PublicNodeView,
    StatusHistoryView,
    StatusUpdate,
)
from ..security.auth import Caller, require_admin, resolve_caller
from ..security.tokens import AdminIdentity
from ..services.registry import NodeFilters
from . import check_id

log = get_logger(__name__)

router = APIRouter(prefix="/nodes", tags=["nodes"])


@router.post("", summary="Register a node", response_model=AdminNodeView, status_code=status.HTTP_201_CREATED)
def create_node(body: NodeCreate, request: Request, _admin: AdminIdentity = Depends(require_admin)) -> AdminNodeView:
    node = get_services(request).registry.create(body.to_draft())
    return AdminNodeView.model_validate(node)


@router.get("", summary="List nodes", response_model=None)
def list_nodes(
    request: Request,
    caller: Caller = Depends(resolve_caller),
    page: int = Query(1, description="1-based page number"),
    limit: int = Query(20, description="Page size (max 100)"),
    search: Optional[str] = Query(None, description="Substring of name or description"),
    protocol: Optional[str] = Query(None),
    node_status: Optional[str] = Query(None, alias="status"),
) -> Union[AdminNodeList, PublicNodeList]:
    filters = NodeFilters(search=search, protocol=protocol or None, status=node_status or None)
    nodes, total = get_services(request).registry.list(filters, page=page, limit=limit)
    meta = PageMeta.build(page=page, limit=min(limit, 100), total=total)
    if caller.is_admin:
        return AdminNodeList(items=[AdminNodeView.model_validate(n) for n in nodes], meta=meta)
    return PublicNodeList(items=[PublicNodeView.model_validate(n) for n in nodes], meta=meta)


@router.get("/{node_id}", summary="Get a node", response_model=None)
def get_node(
    node_id: int,
    request: Request,
    caller: Caller = Depends(resolve_caller),
) -> Union[AdminNodeView, PublicNodeView]:
    node = get_services(request).registry.get_by_id(check_id(node_id))
    if node is None:
        raise NotFound("Node")
    if caller.is_admin:
        return AdminNodeView.model_validate(node)
    return PublicNodeView.model_validate(node)


@router.put("/{node_id}", summary="Update a node", response_model=AdminNodeView)
def update_node(
    node_id: int,
    body: NodeUpdate,
    request: Request,
    _admin: AdminIdentity = Depends(require_admin),
) -> AdminNodeView:
    node = get_services(request).registry.update(check_id(node_id), body.to_changes())
    if node is None:
        raise NotFound("Node")
    return AdminNodeView.model_validate(node)


@router.delete("/{node_id}", summary="Delete a node", response_model=Message)
def delete_node(node_id: int, request: Request, _admin: AdminIdentity = Depends(require_admin)) -> Message:
    if not get_services(request).registry.delete(check_id(node_id)):
        raise NotFound("Node")
    return Message(message="Node deleted")


@router.get("/{node_id}/status", summary="Current node status", response_model=NodeStatusView)
def get_node_status(node_id: int, request: Request, _admin: AdminIdentity = Depends(require_admin)) -> NodeStatusView:
    info = get_services(request).registry.get_status(check_id(node_id))
    if info is None:
        raise NotFound("Node")
    return NodeStatusView(
        node_id=info.node_id,
        status=info.status,
        response_time=info.response_time,
        last_status_update=info.last_status_update,
    )


@router.put("/{node_id}/status", summary="Report node status", response_model=NodeStatusView)
def put_node_status(
    node_id: int,
    body: StatusUpdate,
    request: Request,
    _admin: AdminIdentity = Depends(require_admin),
) -> NodeStatusView:
    registry = get_services(request).registry
    node_id = check_id(node_id)
    if not registry.record_status(node_id, body.status, body.response_time, body.metadata):
        raise NotFound("Node")
    log.debug("node_status_reported", node_id=node_id, status=body.status)
    return get_node_status(node_id, request, _admin)


@router.get("/{node_id}/status/history", summary="Status history", response_model=List[StatusHistoryView])
def get_status_history(
    node_id: int,
    request: Request,
    limit: int = Query(20, description="Max entries (capped at 100)"),
    _admin: AdminIdentity = Depends(require_admin),
) -> List[StatusHistoryView]:
    registry = get_services(request).registry
    if registry.get_by_id(check_id(node_id)) is None:
        raise NotFound("Node")
    return [StatusHistoryView.model_validate(h) for h in registry.status_history(node_id, limit)]
