from __future__ import annotations

import pytest

from relay_registry.adapters.geoip import GeoInfo
from relay_registry.errors import ValidationError
from relay_registry.models.records import STATUS_OFFLINE, NodeChanges
from relay_registry.services.registry import NodeFilters, NodeRegistry

from .conftest import make_draft


class StubGeo:
    def __init__(self, info: GeoInfo | None = None, fail: bool = False) -> None:
        self.info = info or GeoInfo()
        self.fail = fail
        self.hosts: list[str] = []

    def lookup(self, host):
        self.hosts.append(host)
        if self.fail:
            raise RuntimeError("geo backend down")
        return self.info


# ----------------------------
# create
# ----------------------------
def test_create_assigns_id_defaults_and_timestamps(registry, clock):
    node = registry.create(make_draft())
    assert node.id >= 1
    assert node.status == STATUS_OFFLINE
    assert node.response_time is None
    assert node.last_status_update is None
    assert node.allow_relay is True
    assert node.created_at == clock.now
    assert node.updated_at == clock.now
    assert registry.get_by_id(node.id) == node


def test_create_reports_missing_required_fields(registry):
    with pytest.raises(ValidationError) as ei:
        registry.create(make_draft(port=None, protocol=None))
    assert ei.value.details["missing"] == ["port", "protocol"]
    assert registry.list()[1] == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"port": 0},
        {"port": 65536},
        {"protocol": "ftp"},
        {"max_connections": 0},
        {"name": "   "},
        {"host": ""},
    ],
)
def test_create_rejects_out_of_range_values(registry, overrides):
    with pytest.raises(ValidationError):
        registry.create(make_draft(**overrides))


def test_create_accepts_port_bounds(registry):
    assert registry.create(make_draft(port=1)).port == 1
    assert registry.create(make_draft(port=65535)).port == 65535


def test_geo_result_overrides_supplied_region(db, clock):
    geo = StubGeo(GeoInfo(region="Germany", isp="Hetzner Online GmbH"))
    reg = NodeRegistry(db, geo=geo, clock=clock)
    node = reg.create(make_draft(region="Mars", host="relay.example.org"))
    assert geo.hosts == ["relay.example.org"]
    assert node.region == "Germany"
    assert node.isp == "Hetzner Online GmbH"


def test_geo_miss_keeps_supplied_region(db, clock):
    reg = NodeRegistry(db, geo=StubGeo(GeoInfo()), clock=clock)
    node = reg.create(make_draft(region="Japan"))
    assert node.region == "Japan"
    assert node.isp is None


def test_geo_failure_never_blocks_creation(db, clock):
    reg = NodeRegistry(db, geo=StubGeo(fail=True), clock=clock)
    node = reg.create(make_draft(region="Japan"))
    assert node.id >= 1
    assert node.region == "Japan"


# ----------------------------
# list
# ----------------------------
def test_list_newest_first_with_total_and_paging(registry):
    ids = [registry.create(make_draft(name=f"n{i}")).id for i in range(5)]
    page1, total = registry.list(page=1, limit=2)
    page3, _ = registry.list(page=3, limit=2)
    assert total == 5
    assert [n.id for n in page1] == ids[::-1][:2]
    assert [n.id for n in page3] == [ids[0]]


def test_list_limit_is_capped(registry):
    registry.create(make_draft())
    nodes, total = registry.list(limit=1000)
    assert total == 1 and len(nodes) == 1


def test_list_search_matches_name_or_description_literally(registry):
    registry.create(make_draft(name="tokyo-1", description="edge"))
    registry.create(make_draft(name="paris-1", description="100% uptime"))
    registry.create(make_draft(name="berlin", description="tokyo backup"))

    assert {n.name for n in registry.list(NodeFilters(search="tokyo"))[0]} == {"tokyo-1", "berlin"}
    # "%" is a literal, not a wildcard
    assert [n.name for n in registry.list(NodeFilters(search="0%"))[0]] == ["paris-1"]


def test_list_filters_by_protocol_and_status(registry):
    a = registry.create(make_draft(protocol="http"))
    registry.create(make_draft(protocol="ws"))
    registry.record_status(a.id, "Online", 12)

    assert [n.id for n in registry.list(NodeFilters(protocol="http"))[0]] == [a.id]
    assert [n.id for n in registry.list(NodeFilters(status="Online"))[0]] == [a.id]
    assert registry.list(NodeFilters(status="Offline"))[1] == 1


@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (-1, 5)])
def test_list_rejects_bad_paging(registry, page, limit):
    with pytest.raises(ValidationError):
        registry.list(page=page, limit=limit)


def test_list_rejects_unknown_filter_values(registry):
    with pytest.raises(ValidationError):
        registry.list(NodeFilters(protocol="gopher"))
    with pytest.raises(ValidationError):
        registry.list(NodeFilters(status="Sleeping"))


# ----------------------------
# update
# ----------------------------
def test_update_changes_only_assigned_fields(registry, clock):
    node = registry.create(make_draft())
    clock.advance(5)
    updated = registry.update(node.id, NodeChanges(port=443, description=None))
    assert updated.port == 443
    assert updated.description is None
    assert updated.name == node.name
    assert updated.network_secret == node.network_secret
    assert updated.updated_at == clock.now
    assert updated.created_at == node.created_at


def test_update_without_changes_returns_current_node(registry):
    node = registry.create(make_draft())
    assert NodeChanges().is_empty()
    assert registry.update(node.id, NodeChanges()) == node


def test_update_cannot_clear_required_fields(registry):
    node = registry.create(make_draft())
    with pytest.raises(ValidationError):
        registry.update(node.id, NodeChanges(name=None))
    with pytest.raises(ValidationError):
        registry.update(node.id, NodeChanges(protocol="udp"))
    assert registry.get_by_id(node.id) == node


def test_update_unknown_node_returns_none(registry):
    assert registry.update(999, NodeChanges(port=80)) is None


# ----------------------------
# delete
# ----------------------------
def test_delete_removes_node_and_history(registry, db):
    node = registry.create(make_draft())
    registry.record_status(node.id, "Online", 10)
    registry.record_status(node.id, "Offline")

    assert registry.delete(node.id) is True
    assert registry.get_by_id(node.id) is None
    assert db.fetch_one("SELECT COUNT(*) AS n FROM node_status_history WHERE node_id = ?", (node.id,))["n"] == 0
    assert registry.delete(node.id) is False


# ----------------------------
# status
# ----------------------------
def test_record_status_updates_cache_and_appends_history(registry, clock):
    node = registry.create(make_draft())
    clock.advance(10)
    assert registry.record_status(node.id, "Online", 42, {"probe": "eu-1"}) is True

    info = registry.get_status(node.id)
    assert info.status == "Online"
    assert info.response_time == 42
    assert info.last_status_update == clock.now

    history = registry.status_history(node.id)
    assert len(history) == 1
    assert history[0].metadata == {"probe": "eu-1"}
    assert history[0].checked_at == clock.now


def test_status_history_is_newest_first_and_limited(registry, clock):
    node = registry.create(make_draft())
    for rt in (10, 20, 30):
        clock.advance(1)
        registry.record_status(node.id, "Online", rt)

    assert [h.response_time for h in registry.status_history(node.id)] == [30, 20, 10]
    assert [h.response_time for h in registry.status_history(node.id, limit=2)] == [30, 20]
    # cached status follows the latest report
    assert registry.get_status(node.id).response_time == 30


def test_repeated_offline_report_appends_each_time(registry):
    node = registry.create(make_draft())
    assert registry.record_status(node.id, "Offline") is True
    assert registry.record_status(node.id, "Offline") is True

    assert registry.get_by_id(node.id).status == STATUS_OFFLINE
    history = registry.status_history(node.id)
    assert [h.status for h in history] == ["Offline", "Offline"]


def test_record_status_unknown_node(registry):
    assert registry.record_status(404, "Online", 5) is False
    assert registry.get_status(404) is None


@pytest.mark.parametrize("status,rt", [("Maintenance", None), ("online", None), ("Online", -1)])
def test_record_status_rejects_bad_input(registry, status, rt):
    node = registry.create(make_draft())
    with pytest.raises(ValidationError):
        registry.record_status(node.id, status, rt)
    assert registry.status_history(node.id) == []
