from __future__ import annotations

import re

import pytest


@pytest.mark.asyncio
async def test_healthz_ok(aclient):
    resp = await aclient.get("/healthz")
    assert resp.status_code == 200
    assert "application/json" in resp.headers.get("content-type", "").lower()
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_readyz_reports_database(aclient):
    resp = await aclient.get("/readyz")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ready"] is True
    assert data["checks"]["database"]["ok"] is True
    assert data["checks"]["geoip"]["available"] is False


@pytest.mark.asyncio
async def test_readyz_degraded_when_database_fails(app, aclient, monkeypatch):
    monkeypatch.setattr(app.state.services.db, "ping", lambda: False)
    resp = await aclient.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"


@pytest.mark.asyncio
async def test_version_endpoint(aclient):
    data = (await aclient.get("/version")).json()
    assert re.match(r"^\d+\.\d+\.\d+", data["version"])
    assert data["service"] == "relay-registry"


@pytest.mark.asyncio
async def test_request_id_is_echoed(aclient):
    resp = await aclient.get("/healthz", headers={"X-Request-Id": "trace-abc.123"})
    assert resp.headers["X-Request-Id"] == "trace-abc.123"
    generated = await aclient.get("/healthz", headers={"X-Request-Id": "bad id with spaces"})
    assert re.fullmatch(r"[0-9a-f]{32}", generated.headers["X-Request-Id"])


@pytest.mark.asyncio
async def test_metrics_exposed(aclient):
    await aclient.get("/healthz")
    resp = await aclient.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text


@pytest.mark.asyncio
async def test_unknown_route_is_problem_json(aclient):
    resp = await aclient.get("/nope")
    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("application/problem+json")
