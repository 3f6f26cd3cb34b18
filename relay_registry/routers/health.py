from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response, status

from .. import version as svc_version
from ..deps import get_services

router = APIRouter(tags=["health"])

_PROCESS_START = time.time()


def _version_blob() -> Dict[str, Any]:
    return {
        "service": "relay-registry",
        "version": svc_version.__version__,
        "git": svc_version.git_describe(),
        "python": "{}.{}.{}".format(*sys.version_info[:3]),
        "started_at": datetime.fromtimestamp(_PROCESS_START, tz=timezone.utc).isoformat(),
        "uptime_seconds": round(max(0.0, time.time() - _PROCESS_START), 3),
    }


@router.get("/healthz", summary="Liveness probe", response_model=None)
def healthz() -> Dict[str, Any]:
    """Always 200 while the process is serving requests."""
    return {"status": "ok", **_version_blob()}


@router.get("/readyz", summary="Readiness probe", response_model=None)
def readyz(request: Request, response: Response) -> Dict[str, Any]:
    """
    Ready when the database answers. GeoIP is reported but optional: without
    it nodes are simply registered without region/ISP.
    """
    svc = get_services(request)
    db_ok = svc.db.ping()
    checks = {
        "database": {"ok": db_ok, "path": str(svc.db.path)},
        "geoip": {"ok": True, "available": svc.geoip.available},
    }
    if not db_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": "ready" if db_ok else "degraded", "ready": db_ok, "checks": checks}


@router.get("/version", summary="Service version", response_model=None)
def version() -> Dict[str, Any]:
    return _version_blob()
