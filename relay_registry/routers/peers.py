from __future__ import annotations

"""
Peers Router

Endpoints:
  - GET /peers?count=&protocol=&region=   : load-balanced batch of online nodes

Requires an API key unless ``peers.require_api_key`` is disabled. Admitted
requests carry ``X-RateLimit-*`` headers and are recorded in the access log.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ..deps import get_services
from ..models.nodes import PeerView
from ..models.peers import PeerResponse
from ..models.records import ApiCredential
from ..security.auth import ApiKeyAuth

router = APIRouter(tags=["peers"])

_peer_auth = ApiKeyAuth(required=None)


@router.get("/peers", summary="Discover relay peers", response_model=PeerResponse)
def get_peers(
    request: Request,
    count: Optional[int] = Query(None, description="Batch size, 1-20 (default 5)"),
    protocol: Optional[str] = Query(None, description="http | https | ws | wss"),
    region: Optional[str] = Query(None, description="Region; nodes without region data also match"),
    _cred: Optional[ApiCredential] = Depends(_peer_auth),
) -> PeerResponse:
    svc = get_services(request)
    batch = svc.peers.select_peers(count=count, protocol=protocol or None, region=region or None)
    if svc.metrics is not None:
        svc.metrics.peer_requests_total.labels(protocol or "any").inc()
        svc.metrics.peers_returned_total.inc(len(batch.peers))
    return PeerResponse(
        peers=[PeerView.model_validate(p) for p in batch.peers],
        total_available=batch.total_available,
        next_batch_available=batch.has_more,
    )
