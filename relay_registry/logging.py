from __future__ import annotations

"""
Logging bootstrap for the relay registry.

structlog renders every event (ours and Uvicorn's) through one stdlib
handler, as JSON in production or colored key/value lines on a console.
Request ids bound by ``middleware.request_id`` ride along via contextvars,
and credential-bearing fields are masked before rendering.

    setup_logging(service_name="relay-registry", level="INFO")
    log = get_logger("registry")
    log.info("node_created", node_id=7, protocol="wss")

``LOG_LEVEL`` and ``LOG_FORMAT`` are consulted when the caller passes no
explicit value.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import structlog
from structlog.contextvars import merge_contextvars

# Event keys whose values never leave the process in clear text.
REDACT_KEYS = frozenset(
    {
        "authorization",
        "token",
        "access_token",
        "password",
        "password_hash",
        "secret",
        "jwt_secret",
        "network_secret",
        "api_key",
        "key",
    }
)

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _redact_secrets(_: logging.Logger, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in event_dict.items():
        if v is not None and k.lower() in REDACT_KEYS:
            event_dict[k] = "***"
    return event_dict


def _shared_processors(service_name: str, with_tracebacks: bool) -> List[Any]:
    def add_service(_: logging.Logger, __: str, ev: Dict[str, Any]) -> Dict[str, Any]:
        ev.setdefault("service", service_name)
        return ev

    chain: List[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        merge_contextvars,
        add_service,
        _redact_secrets,
    ]
    if with_tracebacks:
        chain.append(structlog.processors.format_exc_info)
    return chain


def setup_logging(
    *,
    service_name: str = "relay-registry",
    level: Optional[str | int] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Install the structlog pipeline on the root logger. Calling it again
    replaces the previous handler, so tests and the CLI can reconfigure.
    """
    level = level or os.getenv("LOG_LEVEL", "").upper() or "INFO"
    if isinstance(level, str):
        level = level.upper()
    log_format = (log_format or os.getenv("LOG_FORMAT") or "json").lower()
    console = log_format == "console"

    shared = _shared_processors(service_name, with_tracebacks=not console)
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True, sort_keys=False)
        if console
        else structlog.processors.JSONRenderer(sort_keys=True)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _UVICORN_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers = [handler]
        lg.propagate = False
        lg.setLevel(level)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    log = structlog.get_logger()
    return log.bind(logger=name) if name else log


def bind_request_context(**kv: Any) -> None:
    """Attach request-scoped fields (request_id, ...) to every later event."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_request_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


__all__ = [
    "setup_logging",
    "get_logger",
    "bind_request_context",
    "clear_request_context",
]
