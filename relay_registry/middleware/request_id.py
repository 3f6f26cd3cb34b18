from __future__ import annotations

"""
Request ID middleware.

- Propagates an inbound ``X-Request-Id`` (if sane) or generates a new one.
- Exposes it as ``request.state.request_id`` and echoes it on the response.
- Binds it into structlog contextvars for the duration of the request so
  every log line emitted while serving the request carries it.
"""

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..logging import bind_request_context, clear_request_context

REQUEST_ID_HEADER = "X-Request-Id"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._\-]{1,128}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        inbound = request.headers.get(REQUEST_ID_HEADER.lower(), "")
        req_id = inbound if _SAFE_ID.match(inbound) else uuid.uuid4().hex
        request.state.request_id = req_id

        bind_request_context(request_id=req_id)
        try:
            response: Response = await call_next(request)
        finally:
            clear_request_context("request_id")

        response.headers[REQUEST_ID_HEADER] = req_id
        return response


__all__ = ["RequestIdMiddleware", "REQUEST_ID_HEADER"]
