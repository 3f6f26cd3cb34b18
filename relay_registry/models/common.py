from __future__ import annotations

"""
Common API model types: pagination metadata and simple acknowledgements.
"""

from typing import Optional

from pydantic import BaseModel, Field


class PageMeta(BaseModel):
    page: int = Field(ge=1)
    limit: int = Field(ge=1, le=100)
    total: int = Field(ge=0)
    total_pages: int = Field(ge=0)
    next_page: Optional[int] = None
    prev_page: Optional[int] = None

    @classmethod
    def build(cls, *, page: int, limit: int, total: int) -> "PageMeta":
        pages = (total + limit - 1) // limit if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=pages,
            next_page=page + 1 if page < pages else None,
            prev_page=page - 1 if page > 1 else None,
        )


class Message(BaseModel):
    message: str


__all__ = ["PageMeta", "Message"]
