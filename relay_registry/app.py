from __future__ import annotations

import random
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .adapters.geoip import GeoIPService
from .clock import Clock, utcnow
from .config import DEFAULT_JWT_SECRET, Settings, get_settings
from .deps import Services
from .logging import get_logger
from .metrics import setup_metrics
from .middleware.errors import install_error_handlers
from .middleware.logging import AccessLogMiddleware
from .middleware.request_id import RequestIdMiddleware
from .routers import build_router
from .security.cors import setup_cors
from .storage import Database, run_migrations
from .version import __version__

log = get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    App lifespan: make sure the schema exists, open GeoIP readers, then
    release both on shutdown.
    """
    svc: Services = app.state.services
    run_migrations(svc.db)
    svc.geoip.open()
    if svc.settings.security.jwt_secret == DEFAULT_JWT_SECRET:
        log.warning("jwt_secret_is_default", hint="set JWT_SECRET before exposing this service")
    log.info("service_started", version=__version__, db=str(svc.db.path), geoip=svc.geoip.available)
    try:
        yield
    finally:
        svc.geoip.close()
        svc.db.close()
        log.info("service_stopped")


def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Optional[Database] = None,
    geoip: Optional[GeoIPService] = None,
    rng: Optional[random.Random] = None,
    clock: Clock = utcnow,
) -> FastAPI:
    """
    FastAPI factory. Wires services from ``settings`` and mounts middleware,
    metrics and routers. Keyword overrides exist for tests.
    """
    cfg = settings or get_settings()
    services = Services.build(cfg, db=db, geoip=geoip, rng=rng, clock=clock)
    # Idempotent; lets the app serve requests even when the lifespan is not run.
    run_migrations(services.db)

    app = FastAPI(
        title="Relay Registry",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.settings = cfg
    app.state.services = services

    # Added first so it sits innermost: it sees the final status of every
    # route, including problem responses from the exception handlers.
    app.add_middleware(AccessLogMiddleware, access_logger=services.access_log)
    app.add_middleware(RequestIdMiddleware)

    setup_cors(app, config=cfg.to_cors_config())

    install_error_handlers(app)

    if cfg.metrics.enabled:
        services.metrics = setup_metrics(
            app,
            service_name=cfg.service_name,
            service_version=__version__,
            path=cfg.metrics.path,
        )

    app.include_router(build_router())
    return app


__all__ = ["create_app"]
