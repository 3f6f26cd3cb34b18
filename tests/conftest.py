from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from relay_registry.app import create_app
from relay_registry.config import GeoIPConfig, SecurityConfig, Settings, StorageConfig
from relay_registry.models.records import NodeDraft
from relay_registry.security.rate_limit import RateLimiter
from relay_registry.services.access_log import AccessLogger
from relay_registry.services.admins import AdminStore
from relay_registry.services.api_keys import CredentialStore
from relay_registry.services.peers import PeerSelector
from relay_registry.services.registry import NodeRegistry
from relay_registry.storage import Database, run_migrations

FIXED_NOW = datetime(2025, 3, 14, 12, 30, 15, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def make_draft(**overrides) -> NodeDraft:
    fields = dict(
        name="relay-1",
        host="203.0.113.10",
        port=11010,
        protocol="wss",
        max_connections=100,
        description="test relay",
        network_name="mesh",
        network_secret="s3cret",
    )
    fields.update(overrides)
    return NodeDraft(**fields)


# ----------------------------
# Settings & storage
# ----------------------------
@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageConfig(db_path=tmp_path / "registry.db"),
        security=SecurityConfig(jwt_secret="test-secret", password_iterations=1000),
        geoip=GeoIPConfig(enabled=False),
    )


@pytest.fixture
def db(settings: Settings) -> Iterator[Database]:
    database = Database(settings.storage.db_path)
    run_migrations(database)
    yield database
    database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ----------------------------
# Services over a shared DB
# ----------------------------
@pytest.fixture
def registry(db: Database, clock: FakeClock) -> NodeRegistry:
    return NodeRegistry(db, clock=clock)


@pytest.fixture
def selector(db: Database, settings: Settings) -> PeerSelector:
    return PeerSelector(db, settings.peers, rng=random.Random(1234))


@pytest.fixture
def credentials(db: Database, settings: Settings, clock: FakeClock) -> CredentialStore:
    return CredentialStore(db, settings.api_keys, clock=clock)


@pytest.fixture
def limiter(db: Database, settings: Settings, clock: FakeClock) -> RateLimiter:
    return RateLimiter(db, settings.rate_limit, clock=clock)


@pytest.fixture
def access_log(db: Database, clock: FakeClock) -> AccessLogger:
    return AccessLogger(db, clock=clock)


@pytest.fixture
def admins(db: Database, settings: Settings, clock: FakeClock) -> AdminStore:
    return AdminStore(db, settings.security, clock=clock)


# ----------------------------
# FastAPI application fixtures
# ----------------------------
@pytest.fixture
def app(settings: Settings) -> FastAPI:
    # Real clock: tokens and the rate window are checked against wall time.
    return create_app(settings, rng=random.Random(99))


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as c:
        yield c


@pytest_asyncio.fixture
async def aclient(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    """Bootstraps the first admin (registration is open while none exist)."""
    resp = client.post("/auth/register", json={"username": "root", "password": "hunter22"})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def api_key(client: TestClient, admin_headers: dict[str, str]) -> str:
    resp = client.post("/api-keys", json={"description": "tests", "rate_limit": 50}, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["key"]


@pytest.fixture
def key_headers(api_key: str) -> dict[str, str]:
    return {"X-API-Key": api_key}
