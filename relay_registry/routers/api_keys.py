from __future__ import annotations

"""
API Keys Router (admin only)

Endpoints:
  - POST   /api-keys                  : create a key (full key returned once)
  - GET    /api-keys                  : list keys (masked)
  - GET    /api-keys/{id}             : key detail (masked)
  - DELETE /api-keys/{id}             : delete a key (access logs are kept)
  - PATCH  /api-keys/{id}/status      : activate / deactivate
  - PATCH  /api-keys/{id}/rate-limit  : change requests-per-minute
  - GET    /api-keys/{id}/stats       : access statistics over the last N days
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from ..deps import get_services
from ..errors import NotFound
from ..models.api_keys import (
    ApiKeyCreate,
    ApiKeyList,
    ApiKeyRateLimitUpdate,
    ApiKeyStats,
    ApiKeyStatusUpdate,
    ApiKeyView,
    DailyCount,
)
from ..models.common import Message, PageMeta
from ..security.auth import require_admin
from ..security.tokens import AdminIdentity
from . import check_id

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.post("", summary="Create an API key", response_model=ApiKeyView, status_code=status.HTTP_201_CREATED)
def create_api_key(body: ApiKeyCreate, request: Request, admin: AdminIdentity = Depends(require_admin)) -> ApiKeyView:
    cred = get_services(request).credentials.create(body.description, body.rate_limit, created_by=admin.admin_id)
    return ApiKeyView.from_record(cred, reveal=True)


@router.get("", summary="List API keys", response_model=ApiKeyList)
def list_api_keys(
    request: Request,
    page: int = Query(1),
    limit: int = Query(20),
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    _admin: AdminIdentity = Depends(require_admin),
) -> ApiKeyList:
    creds, total = get_services(request).credentials.list(search=search, is_active=is_active, page=page, limit=limit)
    return ApiKeyList(
        items=[ApiKeyView.from_record(c) for c in creds],
        meta=PageMeta.build(page=page, limit=min(limit, 100), total=total),
    )


@router.get("/{key_id}", summary="Get an API key", response_model=ApiKeyView)
def get_api_key(key_id: int, request: Request, _admin: AdminIdentity = Depends(require_admin)) -> ApiKeyView:
    cred = get_services(request).credentials.get(check_id(key_id))
    if cred is None:
        raise NotFound("API key")
    return ApiKeyView.from_record(cred)


@router.delete("/{key_id}", summary="Delete an API key", response_model=Message)
def delete_api_key(key_id: int, request: Request, _admin: AdminIdentity = Depends(require_admin)) -> Message:
    if not get_services(request).credentials.delete(check_id(key_id)):
        raise NotFound("API key")
    return Message(message="API key deleted")


@router.patch("/{key_id}/status", summary="Activate or deactivate", response_model=ApiKeyView)
def set_api_key_status(
    key_id: int,
    body: ApiKeyStatusUpdate,
    request: Request,
    _admin: AdminIdentity = Depends(require_admin),
) -> ApiKeyView:
    store = get_services(request).credentials
    if not store.set_active(check_id(key_id), body.is_active):
        raise NotFound("API key")
    return ApiKeyView.from_record(store.get(key_id))


@router.patch("/{key_id}/rate-limit", summary="Change rate limit", response_model=ApiKeyView)
def set_api_key_rate_limit(
    key_id: int,
    body: ApiKeyRateLimitUpdate,
    request: Request,
    _admin: AdminIdentity = Depends(require_admin),
) -> ApiKeyView:
    store = get_services(request).credentials
    if not store.set_rate_limit(check_id(key_id), body.rate_limit):
        raise NotFound("API key")
    return ApiKeyView.from_record(store.get(key_id))


@router.get("/{key_id}/stats", summary="Access statistics", response_model=ApiKeyStats)
def get_api_key_stats(
    key_id: int,
    request: Request,
    days: int = Query(7, description="Look-back window in days (1-30)"),
    _admin: AdminIdentity = Depends(require_admin),
) -> ApiKeyStats:
    store = get_services(request).credentials
    if store.get(check_id(key_id)) is None:
        raise NotFound("API key")
    stats = store.access_stats(key_id, days)
    return ApiKeyStats(
        api_key_id=key_id,
        days=days,
        total_requests=stats.total_requests,
        successful_requests=stats.successful_requests,
        failed_requests=stats.failed_requests,
        daily_stats=[DailyCount(date=d, requests=n) for d, n in stats.daily],
    )
