from __future__ import annotations

"""
Exception → RFC7807 "problem+json" mappers for FastAPI.

- Produces `application/problem+json` for:
    * ApiError subclasses (relay_registry.errors), including their extra headers
    * Starlette/FastAPI HTTPException
    * RequestValidationError (422)
    * Unhandled exceptions (500)
- Attaches ``request_id`` from request.state when the request-id middleware ran.
- Never leaks stack traces in responses; logs them instead.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import ApiError
from ..logging import get_logger

PROBLEM_CT = "application/problem+json"

log = get_logger(__name__)

_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    409: "Conflict",
    415: "Unsupported Media Type",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def _base_problem(
    request: Request,
    *,
    status: int,
    title: Optional[str] = None,
    detail: Optional[str] = None,
    type_uri: str = "about:blank",
    code: Optional[str] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    prob: Dict[str, Any] = {
        "type": type_uri,
        "title": title or _TITLES.get(status, "Error"),
        "status": status,
        "detail": detail or "",
        "instance": str(request.url.path),
        "request_id": getattr(request.state, "request_id", "") or "",
    }
    if code:
        prob["code"] = code
    for k, v in (extras or {}).items():
        prob.setdefault(k, v)
    return prob


# --------------------------- Handlers ---------------------------


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    problem = exc.to_problem()
    body = _base_problem(
        request,
        status=exc.status_code,
        title=problem["title"],
        detail=exc.message,
        type_uri=problem["type"],
        code=exc.code,
        extras={"details": problem["details"]} if "details" in problem else None,
    )
    if exc.status_code >= 500:
        log.error("api_error", code=exc.code, status=exc.status_code, detail=exc.message, path=body["instance"])
    else:
        log.info("api_error", code=exc.code, status=exc.status_code, detail=exc.message, path=body["instance"])
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(body),
        media_type=PROBLEM_CT,
        headers=dict(exc.headers or {}),
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    status = int(exc.status_code)
    detail = str(exc.detail) if getattr(exc, "detail", None) else ""
    body = _base_problem(request, status=status, detail=detail)
    (log.info if 400 <= status < 500 else log.error)("http_exception", status=status, detail=detail, path=body["instance"])
    return JSONResponse(
        status_code=status,
        content=body,
        media_type=PROBLEM_CT,
        headers=getattr(exc, "headers", None),
    )


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = _base_problem(
        request,
        status=422,
        detail="Request validation failed.",
        code="request_validation",
        extras={"errors": jsonable_encoder(exc.errors())},
    )
    log.info("request_validation_error", path=body["instance"], errors=len(body["errors"]))
    return JSONResponse(status_code=422, content=body, media_type=PROBLEM_CT)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    body = _base_problem(
        request,
        status=500,
        detail="An unexpected error occurred. Please retry or contact support with the request_id.",
        code="server_error",
    )
    log.exception("unhandled_exception", path=body["instance"], exc_type=exc.__class__.__name__)
    return JSONResponse(status_code=500, content=body, media_type=PROBLEM_CT)


# --------------------------- Installer ---------------------------


def install_error_handlers(app: FastAPI) -> None:
    """Register exception handlers on the given FastAPI app."""
    app.add_exception_handler(ApiError, _handle_api_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = ["install_error_handlers", "PROBLEM_CT"]
