from __future__ import annotations

"""
Peer Selector: picks a bounded, load-balanced batch of healthy relay nodes.

Eligibility
    status == "Online", protocol matches (if given), and region equals the
    filter or is unset on the node.

Ordering
    1. nodes with a known response_time before nodes without one
    2. ascending response_time
    3. uniformly random order among ties, drawn fresh on every call

``total_available`` is the number of eligible nodes before truncation, so a
client can tell whether asking again (or for more) is worthwhile.
"""

import random
from dataclasses import dataclass, field
from itertools import groupby
from typing import Any, List, Optional

from ..config import PeerConfig
from ..errors import ValidationError
from ..logging import get_logger
from ..models.records import STATUS_ONLINE, NodeRecord
from ..storage.sqlite import Database
from .registry import check_protocol

log = get_logger(__name__)


@dataclass(frozen=True)
class PeerBatch:
    peers: List[NodeRecord] = field(default_factory=list)
    total_available: int = 0
    has_more: bool = False


def _health_key(node: NodeRecord):
    return (node.response_time is None, node.response_time or 0)


def order_candidates(nodes: List[NodeRecord], rng: random.Random) -> List[NodeRecord]:
    """Sort by health, then shuffle each group of equally healthy nodes in place."""
    ordered: List[NodeRecord] = []
    for _, group in groupby(sorted(nodes, key=_health_key), key=_health_key):
        tied = list(group)
        if len(tied) > 1:
            rng.shuffle(tied)
        ordered.extend(tied)
    return ordered


class PeerSelector:
    """
    Reads eligible nodes from the registry tables on every call; nothing is
    cached between calls.

    ``rng`` may be a seeded ``random.Random`` for reproducible tests. When it
    is omitted every call draws from a fresh OS-seeded generator.
    """

    def __init__(self, db: Database, config: Optional[PeerConfig] = None, *, rng: Optional[random.Random] = None) -> None:
        self.db = db
        self.config = config or PeerConfig()
        self._rng = rng

    def _check_count(self, count: Any) -> int:
        if count is None:
            return self.config.default_count
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= self.config.max_count:
            raise ValidationError(
                f"count must be an integer in 1..{self.config.max_count}",
                details={"field": "count", "value": count},
            )
        return count

    def select_peers(
        self,
        count: Optional[int] = None,
        protocol: Optional[str] = None,
        region: Optional[str] = None,
    ) -> PeerBatch:
        count = self._check_count(count)

        where = ["status = ?"]
        params: List[Any] = [STATUS_ONLINE]
        if protocol:
            where.append("protocol = ?")
            params.append(check_protocol(protocol))
        if region:
            where.append("(region = ? OR region IS NULL)")
            params.append(region)

        rows = self.db.fetch_all(f"SELECT * FROM nodes WHERE {' AND '.join(where)}", params)
        candidates = [NodeRecord.from_row(r) for r in rows]
        total = len(candidates)
        if total == 0:
            log.debug("peer_selection_empty", protocol=protocol, region=region)
            return PeerBatch()

        rng = self._rng if self._rng is not None else random.Random()
        ordered = order_candidates(candidates, rng)
        batch = PeerBatch(peers=ordered[:count], total_available=total, has_more=total > count)
        log.debug(
            "peers_selected",
            requested=count,
            returned=len(batch.peers),
            total_available=total,
            protocol=protocol,
            region=region,
        )
        return batch


__all__ = ["PeerSelector", "PeerBatch", "order_candidates"]
