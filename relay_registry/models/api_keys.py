from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import PageMeta
from .records import ApiCredential


class ApiKeyCreate(BaseModel):
    description: Optional[str] = Field(None, max_length=255)
    rate_limit: Optional[int] = Field(None, description="Requests per rolling minute (1-10000)")


class ApiKeyView(BaseModel):
    id: int
    key: str = Field(..., description="Masked except on creation")
    description: Optional[str] = None
    is_active: bool
    rate_limit: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, cred: ApiCredential, *, reveal: bool = False) -> "ApiKeyView":
        return cls(
            id=cred.id,
            key=cred.key if reveal else cred.masked_key,
            description=cred.description,
            is_active=cred.is_active,
            rate_limit=cred.rate_limit,
            created_at=cred.created_at,
            updated_at=cred.updated_at,
            last_used_at=cred.last_used_at,
        )


class ApiKeyList(BaseModel):
    items: List[ApiKeyView]
    meta: PageMeta


class ApiKeyStatusUpdate(BaseModel):
    is_active: bool


class ApiKeyRateLimitUpdate(BaseModel):
    rate_limit: int


class DailyCount(BaseModel):
    date: str
    requests: int


class ApiKeyStats(BaseModel):
    api_key_id: int
    days: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    daily_stats: List[DailyCount]


__all__ = [
    "ApiKeyCreate",
    "ApiKeyView",
    "ApiKeyList",
    "ApiKeyStatusUpdate",
    "ApiKeyRateLimitUpdate",
    "ApiKeyStats",
    "DailyCount",
]
