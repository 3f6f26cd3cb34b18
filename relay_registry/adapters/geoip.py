from __future__ import annotations

"""
GeoIP enrichment for node registration.

Looks up a node host in the MaxMind GeoLite2 City and ASN databases:

- ``region`` ← English country name from the City database
- ``isp``    ← autonomous system organisation from the ASN database

Hostnames are resolved to an IPv4 address first. Results are cached per IP
for ``cache_ttl_seconds``; once the cache grows past ``cache_max_entries``
expired entries are pruned.

Every failure (missing database, unresolvable host, address not in the
database, corrupt file) degrades to an empty result. Node creation never
fails because of enrichment.
"""

import ipaddress
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import geoip2.database
import geoip2.errors
from maxminddb import InvalidDatabaseError

from ..config import GeoIPConfig
from ..logging import get_logger

log = get_logger(__name__)

_LOOKUP_ERRORS = (geoip2.errors.GeoIP2Error, InvalidDatabaseError, ValueError, OSError)


@dataclass(frozen=True)
class GeoInfo:
    region: Optional[str] = None
    isp: Optional[str] = None


EMPTY = GeoInfo()


def _resolve_ipv4(host: str) -> Optional[str]:
    host = host.strip().strip("[]")
    try:
        return str(ipaddress.ip_address(host))
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_INET, socket.SOCK_STREAM)
    except (OSError, UnicodeError) as e:
        log.info("geoip_resolve_failed", host=host, error=str(e))
        return None
    for _family, _type, _proto, _canon, sockaddr in infos:
        return sockaddr[0]
    return None


class GeoIPService:
    """
    Thread-safe, TTL-cached GeoIP lookups.

    Readers may be injected (anything with ``city(ip)`` / ``asn(ip)``), which
    is how tests avoid shipping ``.mmdb`` files.
    """

    def __init__(
        self,
        config: GeoIPConfig,
        *,
        city_reader: Any = None,
        asn_reader: Any = None,
        resolver: Callable[[str], Optional[str]] = _resolve_ipv4,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._city = city_reader
        self._asn = asn_reader
        self._resolve = resolver
        self._now = monotonic
        self._cache: Dict[str, Tuple[float, GeoInfo]] = {}
        self._lock = threading.Lock()

    # ------------------------------ lifecycle ------------------------------

    def open(self) -> None:
        """Open configured database files that are present; warn about the rest."""
        if not self.config.enabled:
            log.info("geoip_disabled")
            return
        if self._city is None:
            self._city = self._open_reader(self.config.city_db, "city")
        if self._asn is None:
            self._asn = self._open_reader(self.config.asn_db, "asn")

    @staticmethod
    def _open_reader(path: Optional[Path], kind: str):
        if path is None:
            log.warning("geoip_database_not_configured", kind=kind)
            return None
        if not Path(path).is_file():
            log.warning("geoip_database_missing", kind=kind, path=str(path))
            return None
        try:
            reader = geoip2.database.Reader(str(path))
        except _LOOKUP_ERRORS as e:
            log.warning("geoip_database_unreadable", kind=kind, path=str(path), error=str(e))
            return None
        log.info("geoip_database_opened", kind=kind, path=str(path))
        return reader

    def close(self) -> None:
        for reader in (self._city, self._asn):
            close = getattr(reader, "close", None)
            if callable(close):
                close()
        self._city = None
        self._asn = None

    @property
    def available(self) -> bool:
        return self.config.enabled and (self._city is not None or self._asn is not None)

    # ------------------------------- lookups -------------------------------

    def lookup(self, host: Optional[str]) -> GeoInfo:
        """Region/ISP for ``host``; ``EMPTY`` on any failure."""
        if not host or not self.available:
            return EMPTY
        ip = self._resolve(host)
        if ip is None:
            return EMPTY

        now = self._now()
        with self._lock:
            hit = self._cache.get(ip)
            if hit is not None and hit[0] > now:
                return hit[1]

        info = GeoInfo(region=self._country(ip), isp=self._isp(ip))

        with self._lock:
            self._cache[ip] = (now + self.config.cache_ttl_seconds, info)
            if len(self._cache) > self.config.cache_max_entries:
                self._prune(now)
        return info

    def _country(self, ip: str) -> Optional[str]:
        if self._city is None:
            return None
        try:
            resp = self._city.city(ip)
        except _LOOKUP_ERRORS as e:
            log.debug("geoip_city_miss", ip=ip, error=str(e))
            return None
        name = (resp.country.names or {}).get("en")
        return name or None

    def _isp(self, ip: str) -> Optional[str]:
        if self._asn is None:
            return None
        try:
            resp = self._asn.asn(ip)
        except _LOOKUP_ERRORS as e:
            log.debug("geoip_asn_miss", ip=ip, error=str(e))
            return None
        return resp.autonomous_system_organization or None

    def _prune(self, now: float) -> None:
        expired = [ip for ip, (expires, _) in self._cache.items() if expires <= now]
        for ip in expired:
            del self._cache[ip]


__all__ = ["GeoIPService", "GeoInfo", "EMPTY"]
