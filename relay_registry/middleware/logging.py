from __future__ import annotations

"""
Access logging middleware.

For every request:
- one structured ``http_access`` log line (method, route, status, latency,
  client ip, request id).

For requests admitted with an API key (``request.state.credential`` set by
``security.auth``):
- ``X-RateLimit-Limit`` / ``-Remaining`` / ``-Reset`` response headers from
  the limiter's decision;
- an ``api_access_logs`` row written by :class:`AccessLogger` as a background
  task after the response has been sent, so the write never delays or fails
  the request. These rows feed the rate limiter.

Requests rejected before admission (401/429) are not recorded in
``api_access_logs``.
"""

import time
from typing import Callable, Optional

from fastapi import Request
from starlette.background import BackgroundTask
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..logging import get_logger
from ..models.records import AccessLogEntry
from ..services.access_log import AccessLogger

log = get_logger("access")


def client_ip(request: Request) -> str:
    # Prefer X-Forwarded-For (first hop), then X-Real-IP, then the ASGI client addr
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real:
        return real.strip()
    if request.client:
        return request.client.host
    return "unknown"


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    if route is None:
        return request.url.path
    return getattr(route, "path_format", None) or getattr(route, "path", "") or request.url.path


class AccessLogMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, access_logger: AccessLogger):
        super().__init__(app)
        self.access_logger = access_logger

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        ip = client_ip(request)
        try:
            response: Response = await call_next(request)
        except Exception:
            latency_ms = int((time.perf_counter() - start) * 1000)
            await self._record(request, ip, 500, latency_ms)
            log.error("http_access", method=request.method, path=request.url.path, status=500, latency_ms=latency_ms)
            raise

        latency_ms = int((time.perf_counter() - start) * 1000)
        decision = getattr(request.state, "rate_decision", None)
        if decision is not None:
            for name, value in decision.headers().items():
                response.headers[name] = value

        entry = self._entry(request, ip, response.status_code, latency_ms)
        if entry is not None:
            previous: Optional[BackgroundTask] = response.background
            response.background = BackgroundTask(self._log_after, entry, previous)

        log.info(
            "http_access",
            method=request.method,
            path=request.url.path,
            route=_route_template(request),
            status=response.status_code,
            latency_ms=latency_ms,
            client_ip=ip,
            api_key_id=entry.api_key_id if entry is not None else None,
        )
        return response

    def _entry(self, request: Request, ip: str, status: int, latency_ms: int) -> Optional[AccessLogEntry]:
        cred = getattr(request.state, "credential", None)
        if cred is None:
            return None
        return AccessLogEntry(
            api_key_id=cred.id,
            endpoint=request.url.path,
            method=request.method,
            ip_address=ip,
            status_code=status,
            user_agent=request.headers.get("user-agent"),
            response_time=latency_ms,
        )

    async def _record(self, request: Request, ip: str, status: int, latency_ms: int) -> None:
        entry = self._entry(request, ip, status, latency_ms)
        if entry is not None:
            await run_in_threadpool(self.access_logger.log, entry)

    async def _log_after(self, entry: AccessLogEntry, previous: Optional[BackgroundTask]) -> None:
        if previous is not None:
            await previous()
        await BackgroundTask(self.access_logger.log, entry)()


__all__ = ["AccessLogMiddleware", "client_ip"]
