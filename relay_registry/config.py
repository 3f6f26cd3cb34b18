from __future__ import annotations

"""
Configuration loader for the relay registry.

- Reads environment variables (optionally from `.env`) via pydantic-settings.
- Provides strongly typed sub-configs for storage, security, API keys,
  rate limiting, peer discovery, GeoIP enrichment, CORS and metrics.
- Exposes a cached `get_settings()` accessor for process entry points only.
  Components never read settings themselves; the app factory hands each one
  its own sub-config.

Nested values can be set with a double underscore, e.g. ``PEERS__MAX_COUNT=20``.
The most common knobs also have flat aliases:

Storage:
    DB_PATH                      (str, default "./.relay-registry/registry.db")

Security:
    JWT_SECRET                   (str)                  : HS256 signing secret
    JWT_EXPIRES_IN               (int seconds, default 86400)
    ALLOW_ADMIN_REGISTRATION     (bool, default False)  : open /auth/register after bootstrap

GeoIP:
    GEOIP_CITY_DB                (path, optional)       : GeoLite2-City.mmdb
    GEOIP_ASN_DB                 (path, optional)       : GeoLite2-ASN.mmdb

CORS:
    CORS_ALLOW_ORIGINS           (csv|json list)

Logging:
    LOG_LEVEL                    (str, default "INFO")
    LOG_FORMAT                   ("json" | "console")
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ----------------------------- Helpers & Models ------------------------------ #

DEFAULT_JWT_SECRET = "change-me-in-production"


def _parse_list(val: Optional[str | List[str]], *, default: List[str]) -> List[str]:
    if val is None:
        return list(default)
    if isinstance(val, list):
        return [str(x) for x in val]
    s = val.strip()
    if not s:
        return []
    if s.startswith("[") and s.endswith("]"):
        try:
            return [str(x) for x in json.loads(s)]
        except ValueError:
            pass
    return [x.strip() for x in s.split(",") if x.strip()]


class StorageConfig(BaseModel):
    db_path: Path = Path("./.relay-registry/registry.db")

    @field_validator("db_path", mode="before")
    @classmethod
    def _coerce_path(cls, v):
        return Path(v) if v is not None else Path("./.relay-registry/registry.db")


class SecurityConfig(BaseModel):
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_issuer: str = "relay-registry"
    jwt_expires_seconds: int = Field(86400, gt=0)
    allow_admin_registration: bool = False
    password_iterations: int = Field(100_000, ge=1)


class ApiKeyConfig(BaseModel):
    default_rate_limit: int = Field(1000, ge=1)
    max_rate_limit: int = Field(10000, ge=1)
    key_bytes: int = Field(32, ge=16)
    max_generation_attempts: int = Field(10, ge=1)


class RateLimitConfig(BaseModel):
    window_seconds: int = Field(60, gt=0, description="Length of the sliding window.")


class PeerConfig(BaseModel):
    default_count: int = Field(5, ge=1)
    max_count: int = Field(20, ge=1)
    require_api_key: bool = True


class GeoIPConfig(BaseModel):
    enabled: bool = True
    city_db: Optional[Path] = None
    asn_db: Optional[Path] = None
    cache_ttl_seconds: int = Field(3600, ge=0)
    cache_max_entries: int = Field(1000, ge=1)


class CorsConfig(BaseModel):
    allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    allow_headers: List[str] = Field(
        default_factory=lambda: ["Authorization", "Content-Type", "X-API-Key", "X-Request-Id"]
    )
    allow_methods: List[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )
    allow_credentials: bool = False

    @field_validator("allow_origins", "allow_headers", "allow_methods", mode="before")
    @classmethod
    def _coerce_list(cls, v):
        return _parse_list(v, default=[])


class MetricsConfig(BaseModel):
    enabled: bool = True
    path: str = "/metrics"


# --------------------------------- Settings ---------------------------------- #


class Settings(BaseSettings):
    service_name: str = "relay-registry"
    host: str = Field("0.0.0.0", description="Bind address for the HTTP server")
    port: int = Field(8080, description="Bind port for the HTTP server")
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_format: str = Field("json", description='"json" or "console"')

    storage: StorageConfig = Field(default_factory=StorageConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    api_keys: ApiKeyConfig = Field(default_factory=ApiKeyConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    peers: PeerConfig = Field(default_factory=PeerConfig)
    geoip: GeoIPConfig = Field(default_factory=GeoIPConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # --- Env bridges for convenience (.env keys -> nested models) ------------
    DB_PATH: Optional[str] = Field(default=None, alias="DB_PATH")
    JWT_SECRET: Optional[str] = Field(default=None, alias="JWT_SECRET")
    JWT_EXPIRES_IN: Optional[int] = Field(default=None, alias="JWT_EXPIRES_IN")
    ALLOW_ADMIN_REGISTRATION: Optional[bool] = Field(default=None, alias="ALLOW_ADMIN_REGISTRATION")
    GEOIP_CITY_DB: Optional[str] = Field(default=None, alias="GEOIP_CITY_DB")
    GEOIP_ASN_DB: Optional[str] = Field(default=None, alias="GEOIP_ASN_DB")
    CORS_ALLOW_ORIGINS: Optional[str] = Field(default=None, alias="CORS_ALLOW_ORIGINS")

    @model_validator(mode="after")
    def _apply_env_bridges(self) -> "Settings":
        if self.DB_PATH:
            self.storage.db_path = Path(self.DB_PATH)
        if self.JWT_SECRET:
            self.security.jwt_secret = self.JWT_SECRET
        if self.JWT_EXPIRES_IN is not None:
            self.security.jwt_expires_seconds = int(self.JWT_EXPIRES_IN)
        if self.ALLOW_ADMIN_REGISTRATION is not None:
            self.security.allow_admin_registration = bool(self.ALLOW_ADMIN_REGISTRATION)
        if self.GEOIP_CITY_DB:
            self.geoip.city_db = Path(self.GEOIP_CITY_DB)
        if self.GEOIP_ASN_DB:
            self.geoip.asn_db = Path(self.GEOIP_ASN_DB)
        if self.CORS_ALLOW_ORIGINS is not None:
            self.cors.allow_origins = _parse_list(self.CORS_ALLOW_ORIGINS, default=self.cors.allow_origins)
        if self.peers.default_count > self.peers.max_count:
            raise ValueError("peers.default_count must not exceed peers.max_count")
        if self.api_keys.default_rate_limit > self.api_keys.max_rate_limit:
            raise ValueError("api_keys.default_rate_limit must not exceed api_keys.max_rate_limit")
        return self

    # Helper builders --------------------------------------------------------
    def to_cors_config(self):
        """Convert to the security.cors CORSConfig model."""
        from .security.cors import CORSConfig

        return CORSConfig.build(
            origins=list(self.cors.allow_origins),
            allow_methods=list(self.cors.allow_methods),
            allow_headers=list(self.cors.allow_headers),
            allow_credentials=self.cors.allow_credentials,
        )


# ------------------------------- Accessor API -------------------------------- #


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance (entry points only)."""
    return Settings()


__all__ = [
    "Settings",
    "StorageConfig",
    "SecurityConfig",
    "ApiKeyConfig",
    "RateLimitConfig",
    "PeerConfig",
    "GeoIPConfig",
    "CorsConfig",
    "MetricsConfig",
    "DEFAULT_JWT_SECRET",
    "get_settings",
]
