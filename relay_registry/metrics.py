from __future__ import annotations

"""
Prometheus metrics setup and /metrics exporter for the relay registry.

Records, per app instance (each app gets its own ``CollectorRegistry``):
    - http_requests_total{method,path,status}
    - http_request_duration_seconds histogram
    - http_inprogress_requests gauge
    - peer_requests_total{protocol}
    - peers_returned_total
    - rate_limit_decisions_total{decision}

Usage
-----
    from fastapi import FastAPI
    from relay_registry.metrics import setup_metrics

    app = FastAPI()
    metrics = setup_metrics(app, service_name="relay-registry", service_version="0.1.0")
    metrics.rate_limit_decisions_total.labels("allowed").inc()
"""

import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI
from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Gauge, Histogram, Info, ProcessCollector,
                               generate_latest)
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send


# ------------------------------ Registry -------------------------------------


class Metrics:
    """
    Holder for registry and metric objects. Exposed via app.state.metrics.
    """

    def __init__(self, service_name: str, service_version: Optional[str] = None) -> None:
        self.registry = CollectorRegistry()
        ProcessCollector(registry=self.registry)

        self.http_inprogress = Gauge(
            "http_inprogress_requests",
            "In-progress HTTP requests",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
            registry=self.registry,
        )
        self.http_request_duration_seconds = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "path", "status"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )

        # Domain metrics
        self.peer_requests_total = Counter(
            "peer_requests_total",
            "Peer discovery requests served",
            ["protocol"],
            registry=self.registry,
        )
        self.peers_returned_total = Counter(
            "peers_returned_total",
            "Peers handed out by discovery",
            registry=self.registry,
        )
        self.rate_limit_decisions_total = Counter(
            "rate_limit_decisions_total",
            "Rate limiter outcomes for API-key requests",
            ["decision"],
            registry=self.registry,
        )

        self.service_info = Info("service", "Service metadata", registry=self.registry)
        payload = {"name": service_name}
        if service_version:
            payload["version"] = service_version
        self.service_info.info(payload)

    def render_latest(self) -> bytes:
        return generate_latest(self.registry)


# ------------------------------ Middleware -----------------------------------


def _extract_path_template(scope: Scope) -> str:
    """
    Low-cardinality route template (``/nodes/{node_id}``) when the router has
    matched, else the raw path.
    """
    route = scope.get("route")
    for attr in ("path_format", "path"):
        val = getattr(route, attr, None) if route is not None else None
        if isinstance(val, str) and val:
            return val
    return scope.get("path") or ""


class PrometheusMiddleware:
    """
    Minimal ASGI middleware to record HTTP metrics.
    """

    def __init__(self, app: ASGIApp, metrics: Metrics):
        self.app = app
        self.metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        start = time.perf_counter()
        status_code = 500
        # the route is only known after routing; track in-progress by raw path
        raw_path = scope.get("path") or ""
        self.metrics.http_inprogress.labels(method, raw_path).inc()

        async def send_wrapped(message: Dict[str, Any]) -> None:
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapped)
        finally:
            duration = time.perf_counter() - start
            labels = (method, _extract_path_template(scope), str(status_code))
            try:
                self.metrics.http_requests_total.labels(*labels).inc()
                self.metrics.http_request_duration_seconds.labels(*labels).observe(duration)
            finally:
                self.metrics.http_inprogress.labels(method, raw_path).dec()


# ------------------------------ Router ---------------------------------------


def create_metrics_router(metrics: Metrics, path: str = "/metrics") -> APIRouter:
    router = APIRouter()

    @router.get(path, include_in_schema=False)
    async def metrics_endpoint() -> Response:
        return Response(content=metrics.render_latest(), media_type=CONTENT_TYPE_LATEST)

    return router


# ------------------------------ Setup helper ---------------------------------


def setup_metrics(
    app: FastAPI,
    *,
    service_name: str = "relay-registry",
    service_version: Optional[str] = None,
    path: str = "/metrics",
) -> Metrics:
    """
    Create the registry, add the HTTP middleware and mount the exporter.

    Returns the `Metrics` instance and stores it in `app.state.metrics`.
    """
    metrics = Metrics(service_name=service_name, service_version=service_version)
    app.add_middleware(PrometheusMiddleware, metrics=metrics)
    app.include_router(create_metrics_router(metrics, path))
    app.state.metrics = metrics
    return metrics


__all__ = [
    "Metrics",
    "PrometheusMiddleware",
    "create_metrics_router",
    "setup_metrics",
]
