from __future__ import annotations

"""
CORS configuration helpers for FastAPI.

- Exact-origin allowlist plus glob patterns (e.g. "https://*.example.com").
- ``"*"`` allows any origin but is rejected together with credentials.
- Rate-limit and request-id headers are exposed so browser clients can back off.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from ..logging import get_logger

log = get_logger(__name__)

DEFAULT_EXPOSE_HEADERS = [
    "X-Request-Id",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "X-RateLimit-Reset",
    "Retry-After",
]

_GLOB_CHARS = re.compile(r"[*?]")


def _glob_to_regex(glob_origin: str) -> str:
    """
    Convert "https://*.example.com" to an anchored regex matching one or more
    subdomain labels. Paths are not allowed in origin patterns.
    """
    if "://" not in glob_origin:
        raise ValueError(f"Invalid origin pattern (missing scheme): {glob_origin!r}")
    _, rest = glob_origin.split("://", 1)
    if "/" in rest:
        raise ValueError(f"Origin patterns must not include paths: {glob_origin!r}")
    escaped = (
        re.escape(glob_origin)
        .replace(r"\*\.", r"(?:[^/.:]+\.)+")
        .replace(r"\*", r"[^/.:]+")
        .replace(r"\?", r"[^/.:]")
    )
    return r"^" + escaped + r"$"


@dataclass(frozen=True)
class CORSConfig:
    allow_origins: List[str]
    allow_origin_regex: Optional[str]
    allow_methods: List[str]
    allow_headers: List[str]
    expose_headers: List[str] = field(default_factory=lambda: list(DEFAULT_EXPOSE_HEADERS))
    allow_credentials: bool = False
    max_age: int = 600

    @classmethod
    def build(
        cls,
        *,
        origins: List[str],
        allow_methods: List[str],
        allow_headers: List[str],
        allow_credentials: bool = False,
        max_age: int = 600,
    ) -> "CORSConfig":
        if origins == ["*"]:
            if allow_credentials:
                raise ValueError('CORS origin "*" is incompatible with allow_credentials=true')
            return cls(
                allow_origins=["*"],
                allow_origin_regex=None,
                allow_methods=allow_methods,
                allow_headers=allow_headers,
                max_age=max_age,
            )

        exact = [o.rstrip("/") for o in origins if not _GLOB_CHARS.search(o)]
        regexes = [_glob_to_regex(o) for o in origins if _GLOB_CHARS.search(o)]
        combined: Optional[str] = None
        if len(regexes) == 1:
            combined = regexes[0]
        elif regexes:
            combined = r"^(?:" + r"|".join(regexes) + r")$"

        return cls(
            allow_origins=exact,
            allow_origin_regex=combined,
            allow_methods=allow_methods,
            allow_headers=allow_headers,
            allow_credentials=allow_credentials,
            max_age=max_age,
        )


def setup_cors(app: FastAPI, config: CORSConfig) -> CORSConfig:
    """Attach CORSMiddleware to `app`."""
    log.debug("cors_configured", allow_origins=config.allow_origins, allow_origin_regex=config.allow_origin_regex)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allow_origins,
        allow_origin_regex=config.allow_origin_regex,
        allow_credentials=config.allow_credentials,
        allow_methods=config.allow_methods,
        allow_headers=config.allow_headers,
        expose_headers=config.expose_headers,
        max_age=config.max_age,
    )
    return config


__all__ = ["CORSConfig", "setup_cors"]
