from __future__ import annotations

"""
Admin bearer tokens (HS256 JWT via PyJWT).

Claims: ``sub`` (admin id as string), ``username``, ``iat``, ``exp``, ``iss``.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

import jwt

from ..clock import Clock, utcnow
from ..config import SecurityConfig
from ..errors import Unauthorized

ALGORITHM = "HS256"


@dataclass(frozen=True)
class AdminIdentity:
    admin_id: int
    username: str


class TokenService:
    def __init__(self, config: SecurityConfig, *, clock: Clock = utcnow) -> None:
        self.config = config
        self.clock = clock

    def issue(self, admin_id: int, username: str) -> str:
        now = self.clock()
        claims: Dict[str, Any] = {
            "sub": str(admin_id),
            "username": username,
            "iat": now,
            "exp": now + timedelta(seconds=self.config.jwt_expires_seconds),
            "iss": self.config.jwt_issuer,
        }
        return jwt.encode(claims, self.config.jwt_secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> AdminIdentity:
        try:
            claims = jwt.decode(
                token,
                self.config.jwt_secret,
                algorithms=[ALGORITHM],
                issuer=self.config.jwt_issuer,
                options={"require": ["sub", "exp", "iss"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise Unauthorized("Token expired", realm="admin") from e
        except jwt.PyJWTError as e:
            raise Unauthorized("Invalid token", realm="admin") from e
        try:
            admin_id = int(claims["sub"])
        except (TypeError, ValueError) as e:
            raise Unauthorized("Invalid token subject", realm="admin") from e
        return AdminIdentity(admin_id=admin_id, username=str(claims.get("username") or ""))

    @property
    def expires_in(self) -> int:
        return self.config.jwt_expires_seconds


__all__ = ["TokenService", "AdminIdentity", "ALGORITHM"]
