"""
Centralized configuration for the storefront core.

- dataclasses + stdlib, loaded from OS env; optionally parses a .env file.
- Strong typing & validation in __post_init__.
- Immutable singleton via functools.lru_cache.
- Secrets never logged (masked).
"""

from __future__ import annotations

import functools
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, cast
from urllib.parse import urlparse

from dotenv import load_dotenv


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------
def _maybe_load_dotenv(env_path: Path) -> None:
    if env_path.exists():
        load_dotenv(dotenv_path=str(env_path), override=False)


def _mask_url(value: Optional[str]) -> str:
    if not value:
        return "<unset>"
    parsed = urlparse(value)
    host = parsed.hostname or "?"
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://***@{host}{port}"


def _get_env_str(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    v = os.getenv(key, default)
    if required and (v is None or str(v).strip() == ""):
        raise ValueError(f"Missing required env var: {key}")
    return v


def _get_env_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _get_env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    try:
        return int(v)
    except ValueError:
        raise ValueError(f"Env var {key} must be an integer") from None


def _get_env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        raise ValueError(f"Env var {key} must be a number") from None


def _validate_choice(value: str, *, choices: tuple[str, ...], key: str) -> str:
    if value not in choices:
        raise ValueError(f"{key} must be one of {choices}, got {value!r}")
    return value


def _validate_url(value: Optional[str], *, key: str, allowed_schemes: tuple[str, ...]) -> Optional[str]:
    if value in (None, ""):
        return None
    parsed = urlparse(value)
    if parsed.scheme not in allowed_schemes or not parsed.netloc:
        raise ValueError(f"{key} must be a valid URL with scheme in {allowed_schemes}")
    return value


def _validate_postgres_dsn(value: str, *, key: str) -> str:
    if not value.startswith("postgresql://") and not value.startswith("postgresql+asyncpg://"):
        raise ValueError(f"{key} must start with postgresql:// or postgresql+asyncpg://")
    # the async engine needs the asyncpg driver
    if value.startswith("postgresql://"):
        value = "postgresql+asyncpg://" + value[len("postgresql://"):]
    return value


# ------------------------------------------------------------------------------
# Settings dataclass (immutable)
# ------------------------------------------------------------------------------
EnvName = Literal["local", "dev", "staging", "prod"]
LogFormat = Literal["json", "console"]

_DOMAIN_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")


@dataclass(frozen=True)
class Settings:
    # Environment
    environment: EnvName = "local"
    debug: bool = False
    is_testing: bool = False

    # Relational store
    database_url: str = field(default="")
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_statement_timeout_ms: int = 30_000

    # Cache store
    redis_url: str = "redis://localhost:6379/0"
    redis_namespace: Optional[str] = None
    redis_socket_timeout: float = 2.0
    redis_max_connections: int = 50

    # Tenancy
    base_domain: str = "swisscommerce.ch"
    default_region: str = "CH-FR"

    # Cache TTLs (seconds)
    cache_default_ttl: int = 600
    cache_tag_ttl: int = 86_400
    tenant_cache_ttl: int = 3_600

    # Observability
    log_level: str = "INFO"
    log_format: Optional[LogFormat] = None

    # Derived/computed flags (filled in __post_init__)
    is_prod: bool = field(init=False)
    is_staging: bool = field(init=False)
    is_dev: bool = field(init=False)
    is_local: bool = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "environment",
            _validate_choice(self.environment, choices=("local", "dev", "staging", "prod"), key="ENVIRONMENT"),
        )
        if self.log_format is not None:
            _validate_choice(self.log_format, choices=("json", "console"), key="LOG_FORMAT")

        object.__setattr__(self, "database_url", _validate_postgres_dsn(self.database_url, key="DATABASE_URL"))
        _validate_url(self.redis_url, key="REDIS_URL", allowed_schemes=("redis", "rediss"))

        base = self.base_domain.strip().lower().rstrip(".")
        if not _DOMAIN_RE.match(base):
            raise ValueError(f"BASE_DOMAIN is not a valid domain name: {self.base_domain!r}")
        object.__setattr__(self, "base_domain", base)

        if self.database_pool_size < 1:
            raise ValueError("DATABASE_POOL_SIZE must be >= 1")
        if self.redis_socket_timeout <= 0:
            raise ValueError("REDIS_SOCKET_TIMEOUT must be > 0")
        for name in ("cache_default_ttl", "cache_tag_ttl", "tenant_cache_ttl"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be > 0")
        if self.cache_tag_ttl < self.cache_default_ttl:
            raise ValueError("CACHE_TAG_TTL must be >= CACHE_DEFAULT_TTL")

        if not re.fullmatch(r"(?i)DEBUG|INFO|WARNING|ERROR|CRITICAL", self.log_level.strip()):
            raise ValueError("LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")

        env = self.environment
        object.__setattr__(self, "is_prod", env == "prod")
        object.__setattr__(self, "is_staging", env == "staging")
        object.__setattr__(self, "is_dev", env == "dev")
        object.__setattr__(self, "is_local", env == "local")

    # Safe dict (for debug prints without secrets)
    def safe_dict(self) -> dict:
        return {
            "environment": self.environment,
            "debug": self.debug,
            "is_testing": self.is_testing,
            "database_url": _mask_url(self.database_url),
            "database_pool_size": self.database_pool_size,
            "database_max_overflow": self.database_max_overflow,
            "redis_url": _mask_url(self.redis_url),
            "redis_namespace": self.redis_namespace or "<unset>",
            "redis_socket_timeout": self.redis_socket_timeout,
            "redis_max_connections": self.redis_max_connections,
            "base_domain": self.base_domain,
            "default_region": self.default_region,
            "cache_default_ttl": self.cache_default_ttl,
            "cache_tag_ttl": self.cache_tag_ttl,
            "tenant_cache_ttl": self.tenant_cache_ttl,
            "log_level": self.log_level,
            "log_format": self.log_format or "<auto>",
        }


# ------------------------------------------------------------------------------
# Loader (singleton)
# ------------------------------------------------------------------------------
_logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    # .env at the repo root (../../.env relative to this file)
    env_file = Path(__file__).resolve().parent.parent.parent / ".env"
    _maybe_load_dotenv(env_file)

    settings = Settings(
        environment=cast(EnvName, _get_env_str("ENVIRONMENT", "local") or "local"),
        debug=_get_env_bool("DEBUG", False),
        is_testing=_get_env_bool("IS_TESTING", False),
        database_url=_get_env_str("DATABASE_URL", required=True) or "",
        database_pool_size=_get_env_int("DATABASE_POOL_SIZE", 5),
        database_max_overflow=_get_env_int("DATABASE_MAX_OVERFLOW", 10),
        database_statement_timeout_ms=_get_env_int("DATABASE_STATEMENT_TIMEOUT_MS", 30_000),
        redis_url=_get_env_str("REDIS_URL", "redis://localhost:6379/0") or "redis://localhost:6379/0",
        redis_namespace=_get_env_str("REDIS_NAMESPACE", None),
        redis_socket_timeout=_get_env_float("REDIS_SOCKET_TIMEOUT", 2.0),
        redis_max_connections=_get_env_int("REDIS_MAX_CONNECTIONS", 50),
        base_domain=_get_env_str("BASE_DOMAIN", "swisscommerce.ch") or "swisscommerce.ch",
        default_region=_get_env_str("DEFAULT_REGION", "CH-FR") or "CH-FR",
        cache_default_ttl=_get_env_int("CACHE_DEFAULT_TTL", 600),
        cache_tag_ttl=_get_env_int("CACHE_TAG_TTL", 86_400),
        tenant_cache_ttl=_get_env_int("TENANT_CACHE_TTL", 3_600),
        log_level=_get_env_str("LOG_LEVEL", "INFO") or "INFO",
        log_format=cast(Optional[LogFormat], _get_env_str("LOG_FORMAT", None)),
    )

    _logger.info("Settings loaded", extra={"settings": settings.safe_dict()})
    return settings
