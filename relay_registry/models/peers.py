from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from .nodes import PeerView


class PeerResponse(BaseModel):
    peers: List[PeerView]
    total_available: int = Field(ge=0, description="Eligible nodes before truncation")
    next_batch_available: bool = Field(description="More eligible nodes exist than were returned")


__all__ = ["PeerResponse"]
