"""
Uvicorn launcher for Relay Registry.

Usage:
  relay-registry [--host 0.0.0.0] [--port 8080] [--workers 1] [--reload]
                 [--log-level info]

Environment overrides (if flags not provided):
  HOST / PORT (via settings), WORKERS, RELOAD, LOG_LEVEL, LOG_FORMAT
"""

from __future__ import annotations

import argparse
import os
from typing import Optional

import uvicorn

from .config import get_settings
from .logging import setup_logging


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "y", "on")


def main(argv: Optional[list[str]] = None) -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run Relay Registry (uvicorn)")
    parser.add_argument("--host", default=settings.host, help="Bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=settings.port, help="Port (default: %(default)s)")
    parser.add_argument("--workers", type=int, default=int(os.getenv("WORKERS") or 1), help="Number of workers (default: %(default)s)")
    parser.add_argument("--reload", action="store_true", default=_env_bool("RELOAD", False), help="Enable autoreload (dev only)")
    parser.add_argument("--log-level", default=settings.log_level.lower(), help="Log level (default: %(default)s)")
    parser.add_argument("--forwarded-allow-ips", default="*", help="Comma list of trusted proxies (default: *)")

    args = parser.parse_args(argv)

    if args.reload and args.workers != 1:
        print("[relay-registry] --reload implies --workers=1; overriding.")
        args.workers = 1

    setup_logging(service_name=settings.service_name, level=args.log_level, log_format=settings.log_format)

    # Factory import string: each worker builds its own app and SQLite connections.
    uvicorn.run(
        "relay_registry.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        proxy_headers=True,
        forwarded_allow_ips=args.forwarded_allow_ips,
        reload=args.reload,
        workers=args.workers,
        log_config=None,
    )


if __name__ == "__main__":
    main()
