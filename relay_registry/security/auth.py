from __future__ import annotations

"""
Request authentication.

Two kinds of caller:

- **Admins** present ``Authorization: Bearer <jwt>`` (see ``security.tokens``).
- **API clients** present an API key in ``X-API-Key`` or ``?api_key=``.
  A valid key is run through the rate limiter; a denial becomes a 429 with
  ``X-RateLimit-*`` and ``Retry-After`` headers. An admitted request leaves
  the credential and the decision on ``request.state`` so the access-log
  middleware can echo the headers and record the call.

Usage
-----
    from fastapi import Depends
    from relay_registry.security.auth import ApiKeyAuth, require_admin

    @router.get("/peers")
    def peers(cred=Depends(ApiKeyAuth())): ...

    @router.delete("/nodes/{node_id}")
    def delete(node_id: int, admin=Depends(require_admin)): ...
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from ..deps import Services, get_services
from ..errors import RateLimited, Unauthorized
from ..logging import get_logger
from ..models.records import ApiCredential
from .tokens import AdminIdentity

log = get_logger(__name__)

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY = "api_key"


@dataclass(frozen=True)
class Caller:
    """Resolved identity of a request; selects admin or public projections."""

    admin: Optional[AdminIdentity] = None
    credential: Optional[ApiCredential] = None

    @property
    def is_admin(self) -> bool:
        return self.admin is not None


def _extract_bearer(token_hdr: str) -> Optional[str]:
    parts = token_hdr.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None


def extract_api_key(request: Request) -> Optional[str]:
    key = request.headers.get(API_KEY_HEADER) or request.query_params.get(API_KEY_QUERY)
    key = (key or "").strip()
    return key or None


# ------------------------------ admin (JWT) -----------------------------------


def _verify_admin(request: Request, svc: Services, token: str) -> AdminIdentity:
    ident = svc.tokens.verify(token)
    if svc.admins.get(ident.admin_id) is None:
        raise Unauthorized("Admin account no longer exists", realm="admin")
    request.state.admin = ident
    return ident


def require_admin(request: Request) -> AdminIdentity:
    """Dependency: a valid admin bearer token, else 401."""
    svc = get_services(request)
    token = _extract_bearer(request.headers.get("authorization", ""))
    if not token:
        raise Unauthorized("Missing bearer token", realm="admin")
    return _verify_admin(request, svc, token)


# ------------------------------ API key ---------------------------------------


def _admit_credential(request: Request, svc: Services, key: str) -> ApiCredential:
    cred = svc.credentials.validate(key)
    if cred is None:
        raise Unauthorized("Invalid or inactive API key")

    decision = svc.limiter.check_and_consume(cred.id)
    if svc.metrics is not None:
        svc.metrics.rate_limit_decisions_total.labels("allowed" if decision.allowed else "denied").inc()
    if not decision.allowed:
        raise RateLimited.from_decision(decision, retry_after=decision.retry_after(svc.limiter.clock()))

    request.state.credential = cred
    request.state.rate_decision = decision
    return cred


class ApiKeyAuth:
    """
    FastAPI dependency validating an API key and applying the rate limiter.

    ``required=None`` defers to ``settings.peers.require_api_key``: when the
    key is optional an anonymous request passes without rate accounting,
    while a presented key is still validated and counted.
    """

    def __init__(self, *, required: Optional[bool] = True) -> None:
        self.required = required

    def __call__(self, request: Request) -> Optional[ApiCredential]:
        svc = get_services(request)
        key = extract_api_key(request)
        if key is None:
            required = self.required
            if required is None:
                required = svc.settings.peers.require_api_key
            if required:
                raise Unauthorized("Missing API key")
            return None
        return _admit_credential(request, svc, key)


def resolve_caller(request: Request) -> Caller:
    """
    Dependency for routes readable by both kinds of caller.

    A bearer token is authoritative when present (and must be valid);
    otherwise an API key is required.
    """
    svc = get_services(request)
    token = _extract_bearer(request.headers.get("authorization", ""))
    if token:
        return Caller(admin=_verify_admin(request, svc, token))
    key = extract_api_key(request)
    if key is None:
        raise Unauthorized("Missing credentials")
    return Caller(credential=_admit_credential(request, svc, key))


__all__ = [
    "ApiKeyAuth",
    "Caller",
    "extract_api_key",
    "require_admin",
    "resolve_caller",
]
