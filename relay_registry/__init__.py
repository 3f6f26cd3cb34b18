"""
Relay Registry
==============

FastAPI service that keeps a registry of relay nodes and hands out
load-balanced, rate-limited peer lists to API-key holders.

This package exposes:

- ``__version__``: semantic version string
- ``build_app()``: convenience creator for a configured FastAPI app

Prefer importing submodules directly for specific concerns:
``relay_registry.config``, ``relay_registry.services.peers``,
``relay_registry.security.rate_limit``, etc.
"""

from __future__ import annotations

from .version import __version__

__all__ = ["__version__", "build_app"]


def build_app():
    """
    Create and return a fully configured FastAPI application.

    Thin wrapper around :func:`relay_registry.app.create_app`, imported lazily so
    that consumers needing only version metadata do not pull in FastAPI.
    """
    from .app import create_app

    return create_app()
