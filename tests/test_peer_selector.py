from __future__ import annotations

import random
from collections import Counter

import pytest

from relay_registry.config import PeerConfig
from relay_registry.errors import ValidationError
from relay_registry.services.peers import PeerSelector, order_candidates

from .conftest import make_draft


def _online(registry, name, rt=None, **overrides):
    node = registry.create(make_draft(name=name, **overrides))
    registry.record_status(node.id, "Online", rt)
    return node


def test_only_online_nodes_are_eligible(registry, selector):
    up = _online(registry, "up", 10)
    registry.create(make_draft(name="never-reported"))
    down = _online(registry, "went-down", 5)
    registry.record_status(down.id, "Offline")

    batch = selector.select_peers()
    assert [p.id for p in batch.peers] == [up.id]
    assert batch.total_available == 1
    assert batch.has_more is False


def test_protocol_filter(registry, selector):
    ws = _online(registry, "ws", 10, protocol="ws")
    _online(registry, "http", 10, protocol="http")

    batch = selector.select_peers(protocol="ws")
    assert [p.id for p in batch.peers] == [ws.id]


def test_region_filter_includes_nodes_without_region(registry, selector):
    de = _online(registry, "de", 10, region="Germany")
    unknown = _online(registry, "unknown", 20)
    _online(registry, "jp", 5, region="Japan")

    batch = selector.select_peers(region="Germany")
    assert [p.id for p in batch.peers] == [de.id, unknown.id]
    assert batch.total_available == 2


def test_orders_by_response_time_with_unknown_last(registry, selector):
    slow = _online(registry, "slow", 300)
    unknown = _online(registry, "unknown", None)
    fast = _online(registry, "fast", 15)
    mid = _online(registry, "mid", 80)

    batch = selector.select_peers(count=10)
    assert [p.id for p in batch.peers] == [fast.id, mid.id, slow.id, unknown.id]


def test_truncates_and_reports_total(registry, selector):
    for i in range(8):
        _online(registry, f"n{i}", 10 + i)

    batch = selector.select_peers()
    assert len(batch.peers) == 5
    assert batch.total_available == 8
    assert batch.has_more is True
    assert [p.response_time for p in batch.peers] == [10, 11, 12, 13, 14]

    exact = selector.select_peers(count=8)
    assert len(exact.peers) == 8
    assert exact.has_more is False


def test_empty_registry_yields_empty_batch(selector):
    batch = selector.select_peers(count=3, protocol="https", region="Germany")
    assert batch.peers == []
    assert batch.total_available == 0
    assert batch.has_more is False


@pytest.mark.parametrize("count", [0, -1, 21, True, "5", 2.5])
def test_count_outside_range_is_rejected(selector, count):
    with pytest.raises(ValidationError):
        selector.select_peers(count=count)


def test_count_bounds_follow_config(db):
    sel = PeerSelector(db, PeerConfig(default_count=2, max_count=3))
    with pytest.raises(ValidationError):
        sel.select_peers(count=4)
    assert sel.select_peers(count=3).peers == []


def test_unknown_protocol_is_rejected(selector):
    with pytest.raises(ValidationError):
        selector.select_peers(protocol="smtp")


@pytest.mark.parametrize("tied_rt", [50, None])
@pytest.mark.parametrize("seeded", [True, False])
def test_ties_are_shuffled_uniformly(registry, db, tied_rt, seeded):
    tied = [_online(registry, f"t{i}", tied_rt).id for i in range(3)]
    best = _online(registry, "best", 1).id

    sel = PeerSelector(db, rng=random.Random(2024) if seeded else None)
    firsts: Counter = Counter()
    for _ in range(3000):
        peers = sel.select_peers(count=2).peers
        assert peers[0].id == best
        firsts[peers[1].id] += 1

    assert set(firsts) == set(tied)
    for node_id in tied:
        assert 850 <= firsts[node_id] <= 1150


def test_default_rng_still_orders_by_health(registry, db):
    fast = _online(registry, "fast", 1)
    _online(registry, "slow", 900)
    batch = PeerSelector(db).select_peers(count=1)
    assert [p.id for p in batch.peers] == [fast.id]


def test_order_candidates_keeps_health_groups(registry):
    nodes = [
        _online(registry, "a", None),
        _online(registry, "b", 5),
        _online(registry, "c", 5),
        _online(registry, "d", 1),
    ]
    ordered = order_candidates([registry.get_by_id(n.id) for n in nodes], random.Random(0))
    assert [n.response_time for n in ordered] == [1, 5, 5, None]


def test_status_report_moves_node_in_and_out_of_rotation(registry, selector):
    node = registry.create(make_draft(name="flappy"))
    assert selector.select_peers().total_available == 0

    registry.record_status(node.id, "Online", 25)
    assert [p.id for p in selector.select_peers().peers] == [node.id]

    registry.record_status(node.id, "Offline")
    assert selector.select_peers().total_available == 0


def test_new_node_joins_rotation_after_first_online_report(registry, selector):
    node = registry.create(make_draft(name="fresh", protocol="http", max_connections=10))
    assert node.status == "Offline"

    before = selector.select_peers(5)
    assert before.peers == []
    assert before.total_available == 0
    assert before.has_more is False

    assert registry.record_status(node.id, "Online", 20) is True
    after = selector.select_peers(5)
    assert [p.id for p in after.peers] == [node.id]
    assert after.total_available == 1
    assert after.has_more is False
