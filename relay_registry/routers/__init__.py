"""
Routers package: aggregates all HTTP routes into a single APIRouter.

Usage (from app factory):
    from relay_registry.routers import build_router
    app.include_router(build_router())
"""

from __future__ import annotations

from fastapi import APIRouter

from ..errors import ValidationError


def check_id(value: int, what: str = "id") -> int:
    """Path ids are positive integers; anything else is a 400."""
    if value < 1:
        raise ValidationError(f"{what} must be a positive integer", details={"field": what, "value": value})
    return value


def build_router() -> APIRouter:
    """Build the top-level router. Order controls OpenAPI grouping."""
    from . import api_keys, auth, health, nodes, peers

    root = APIRouter()
    for mod in (health, auth, api_keys, nodes, peers):
        root.include_router(mod.router)
    return root


__all__ = ["build_router", "check_id"]
