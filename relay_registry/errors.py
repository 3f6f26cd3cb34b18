from __future__ import annotations

"""
Error hierarchy and helpers for the relay registry.

Every failure that crosses a component boundary is one of these types.
They are framework-agnostic; ``middleware.errors`` renders them as
RFC 7807 "problem+json" responses.

Usage
-----
    from relay_registry.errors import ValidationError

    raise ValidationError("port must be in 1..65535", details={"field": "port"})

Design
------
- Every error has:
  - ``status_code`` (int): HTTP status
  - ``code`` (str): stable machine code (e.g., "validation_error")
  - ``message`` (str): human-friendly summary
  - ``details`` (dict|None): optional structured diagnostics
  - ``headers`` (dict|None): extra response headers (e.g., Retry-After)
- ``to_problem()`` returns an RFC 7807 dict.

"No peers" and "rate limit reached" are normal return values of the core
components, not errors. ``RateLimited`` only exists for the HTTP edge.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

if TYPE_CHECKING:
    from .security.rate_limit import RateLimitDecision


DEFAULT_ERROR_DOCS_BASE = "about:blank"


@dataclass(eq=False)
class ApiError(Exception):
    message: str
    status_code: int = 400
    code: str = "bad_request"
    details: Optional[Mapping[str, Any]] = None
    headers: Optional[Mapping[str, str]] = None
    type_uri_base: str = DEFAULT_ERROR_DOCS_BASE

    def __post_init__(self) -> None:
        super().__init__(self.message)

    # --- RFC 7807 helpers -------------------------------------------------- #

    def type_uri(self) -> str:
        if self.type_uri_base == "about:blank":
            return self.type_uri_base
        return f"{self.type_uri_base}#{self.code}"

    def title(self) -> str:
        return {
            "bad_request": "Bad Request",
            "validation_error": "Validation Error",
            "unauthorized": "Unauthorized",
            "forbidden": "Forbidden",
            "not_found": "Not Found",
            "conflict": "Conflict",
            "rate_limited": "Rate Limited",
            "store_error": "Storage Unavailable",
        }.get(self.code, self.message or "Error")

    def to_problem(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "type": self.type_uri(),
            "title": self.title(),
            "status": self.status_code,
            "code": self.code,
            "detail": self.message,
        }
        if self.details:
            body["details"] = dict(self.details)
        return body


# ------------------------------ Concrete types ------------------------------- #


class ValidationError(ApiError):
    """Malformed input: missing field or value out of range. Nothing was written."""

    def __init__(self, message: str = "Invalid input", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=400, code="validation_error", details=details)


class Unauthorized(ApiError):
    def __init__(
        self,
        message: str = "Missing or invalid credentials",
        *,
        details: Optional[Mapping[str, Any]] = None,
        realm: str = "api",
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="unauthorized",
            details=details,
            headers={"WWW-Authenticate": f'Bearer realm="{realm}"'},
        )


class Forbidden(ApiError):
    def __init__(self, message: str = "Forbidden", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=403, code="forbidden", details=details)


class NotFound(ApiError):
    def __init__(self, what: str = "Resource", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=f"{what} not found", status_code=404, code="not_found", details=details)


class ConflictError(ApiError):
    def __init__(self, message: str = "Conflict", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=409, code="conflict", details=details)


class RateLimited(ApiError):
    """429 carrying the limiter's ``X-RateLimit-*`` headers and an optional ``Retry-After``."""

    def __init__(self, *, headers: Mapping[str, str], details: Mapping[str, Any]):
        super().__init__(
            message="Too many requests",
            status_code=429,
            code="rate_limited",
            details=details,
            headers=headers,
        )

    @classmethod
    def from_decision(cls, decision: "RateLimitDecision", *, retry_after: Optional[int] = None) -> "RateLimited":
        headers: Dict[str, str] = dict(decision.headers())
        details: Dict[str, Any] = {
            "limit": decision.limit,
            "remaining": decision.remaining,
            "reset_at": decision.reset_ms,
        }
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
            details["retry_after"] = retry_after
        return cls(headers=headers, details=details)


class StoreError(ApiError):
    """Durable store failure. Never retried here; surfaced as a server-side error."""

    def __init__(self, message: str = "Storage unavailable", *, details: Optional[Mapping[str, Any]] = None):
        super().__init__(message=message, status_code=503, code="store_error", details=details)


__all__ = [
    "ApiError",
    "ValidationError",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "ConflictError",
    "RateLimited",
    "StoreError",
]
