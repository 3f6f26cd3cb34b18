from __future__ import annotations

import random

from fastapi.testclient import TestClient

from relay_registry.app import create_app
from relay_registry.config import PeerConfig
from relay_registry.middleware.errors import PROBLEM_CT

from .test_http_nodes import NODE


def _online_node(client, admin_headers, name, rt, **overrides):
    node = client.post("/nodes", json={**NODE, "name": name, **overrides}, headers=admin_headers).json()
    client.put(f"/nodes/{node['id']}/status", json={"status": "Online", "response_time": rt}, headers=admin_headers)
    return node


def _key(client, admin_headers, rate_limit):
    resp = client.post("/api-keys", json={"rate_limit": rate_limit}, headers=admin_headers)
    return resp.json()


def test_peers_requires_api_key(client):
    resp = client.get("/peers")
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"
    assert client.get("/peers", headers={"X-API-Key": "f" * 64}).status_code == 401


def test_peers_returns_best_nodes_with_rate_headers(client, admin_headers, key_headers):
    slow = _online_node(client, admin_headers, "slow", 250)
    fast = _online_node(client, admin_headers, "fast", 20, protocol="ws")
    client.post("/nodes", json={**NODE, "name": "offline"}, headers=admin_headers)

    resp = client.get("/peers", headers=key_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert [p["id"] for p in body["peers"]] == [fast["id"], slow["id"]]
    assert body["total_available"] == 2
    assert body["next_batch_available"] is False
    assert "network_secret" not in body["peers"][0]

    assert resp.headers["X-RateLimit-Limit"] == "50"
    assert resp.headers["X-RateLimit-Remaining"] == "50"
    assert resp.headers["X-RateLimit-Reset"].isdigit()
    assert resp.headers["X-Request-Id"]


def test_peers_filters_and_count(client, admin_headers, key_headers):
    for i in range(4):
        _online_node(client, admin_headers, f"ws-{i}", 10 + i, protocol="ws", region=None)
    _online_node(client, admin_headers, "jp", 1, protocol="ws", region="Japan")

    resp = client.get("/peers", params={"protocol": "ws", "region": "Germany", "count": 2}, headers=key_headers).json()
    assert [p["name"] for p in resp["peers"]] == ["ws-0", "ws-1"]
    assert resp["total_available"] == 4
    assert resp["next_batch_available"] is True


def test_api_key_in_query_string(client, api_key):
    assert client.get("/peers", params={"api_key": api_key}).status_code == 200


def test_bad_count_is_a_validation_error(client, key_headers):
    for count in (0, 21):
        resp = client.get("/peers", params={"count": count}, headers=key_headers)
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
    assert client.get("/peers", params={"count": "many"}, headers=key_headers).status_code == 422
    assert client.get("/peers", params={"protocol": "ftp"}, headers=key_headers).status_code == 400


def test_requests_are_access_logged(client, admin_headers, key_headers):
    client.get("/peers", headers={**key_headers, "User-Agent": "relay-client/2.1"})
    client.get("/peers", params={"count": 0}, headers=key_headers)

    key_id = client.get("/api-keys", headers=admin_headers).json()["items"][0]["id"]
    stats = client.get(f"/api-keys/{key_id}/stats", headers=admin_headers).json()
    assert stats["total_requests"] == 2
    assert stats["successful_requests"] == 1
    assert stats["failed_requests"] == 1

    detail = client.get(f"/api-keys/{key_id}", headers=admin_headers).json()
    assert detail["last_used_at"] is not None

    remaining = client.get("/peers", headers=key_headers).headers["X-RateLimit-Remaining"]
    assert remaining == "48"


def test_rate_limit_rejects_with_429(client, admin_headers):
    created = _key(client, admin_headers, rate_limit=2)
    headers = {"X-API-Key": created["key"]}

    remaining = [client.get("/peers", headers=headers).headers["X-RateLimit-Remaining"] for _ in range(3)]
    assert remaining == ["2", "1", "0"]

    denied = client.get("/peers", headers=headers)
    assert denied.status_code == 429
    assert denied.json()["code"] == "rate_limited"
    assert denied.headers["X-RateLimit-Limit"] == "2"
    assert denied.headers["X-RateLimit-Remaining"] == "0"
    assert int(denied.headers["Retry-After"]) >= 1

    # rejected calls are not counted against the key
    assert client.get(f"/api-keys/{created['id']}/stats", headers=admin_headers).json()["total_requests"] == 3


def test_deactivated_key_is_refused(client, admin_headers):
    created = _key(client, admin_headers, rate_limit=10)
    headers = {"X-API-Key": created["key"]}
    assert client.get("/peers", headers=headers).status_code == 200

    client.patch(f"/api-keys/{created['id']}/status", json={"is_active": False}, headers=admin_headers)
    assert client.get("/peers", headers=headers).status_code == 401


def test_anonymous_peers_when_key_not_required(settings):
    settings.peers = PeerConfig(require_api_key=False)
    app = create_app(settings, rng=random.Random(3))
    with TestClient(app) as c:
        resp = c.get("/peers")
        assert resp.status_code == 200
        assert resp.json() == {"peers": [], "total_available": 0, "next_batch_available": False}
        assert "X-RateLimit-Limit" not in resp.headers


def test_crashed_request_is_still_access_logged(app, client, monkeypatch, admin_headers):
    created = _key(client, admin_headers, rate_limit=10)

    def boom(**_):
        raise RuntimeError("selector exploded")

    monkeypatch.setattr(app.state.services.peers, "select_peers", boom)
    crashing = TestClient(app, raise_server_exceptions=False)
    resp = crashing.get("/peers", headers={"X-API-Key": created["key"]})

    assert resp.status_code == 500
    assert resp.headers["content-type"].startswith(PROBLEM_CT)
    body = resp.json()
    assert body["code"] == "server_error"
    assert "selector exploded" not in resp.text

    rows = app.state.services.db.fetch_all(
        "SELECT status_code, endpoint FROM api_access_logs WHERE api_key_id = ?", (created["id"],)
    )
    assert [(r["status_code"], r["endpoint"]) for r in rows] == [(500, "/peers")]
