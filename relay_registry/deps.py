from __future__ import annotations

"""
Service wiring.

``Services`` is built once per app by :func:`relay_registry.app.create_app`
from an explicit :class:`~relay_registry.config.Settings`, and stored on
``app.state.services``. Route handlers and auth dependencies reach it
through :func:`get_services`; nothing is held in module globals.
"""

import random
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from .adapters.geoip import GeoIPService
from .clock import Clock, utcnow
from .config import Settings
from .metrics import Metrics
from .security.rate_limit import RateLimiter
from .security.tokens import TokenService
from .services.access_log import AccessLogger
from .services.admins import AdminStore
from .services.api_keys import CredentialStore
from .services.peers import PeerSelector
from .services.registry import NodeRegistry
from .storage.sqlite import Database


@dataclass
class Services:
    settings: Settings
    db: Database
    geoip: GeoIPService
    registry: NodeRegistry
    peers: PeerSelector
    limiter: RateLimiter
    access_log: AccessLogger
    credentials: CredentialStore
    admins: AdminStore
    tokens: TokenService
    metrics: Optional[Metrics] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        db: Optional[Database] = None,
        geoip: Optional[GeoIPService] = None,
        rng: Optional[random.Random] = None,
        clock: Clock = utcnow,
    ) -> "Services":
        db = db or Database(settings.storage.db_path)
        geoip = geoip or GeoIPService(settings.geoip)
        return cls(
            settings=settings,
            db=db,
            geoip=geoip,
            registry=NodeRegistry(db, geo=geoip, clock=clock),
            peers=PeerSelector(db, settings.peers, rng=rng),
            limiter=RateLimiter(db, settings.rate_limit, clock=clock),
            access_log=AccessLogger(db, clock=clock),
            credentials=CredentialStore(db, settings.api_keys, clock=clock),
            admins=AdminStore(db, settings.security, clock=clock),
            tokens=TokenService(settings.security),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


__all__ = ["Services", "get_services"]
