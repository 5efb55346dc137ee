"""Configuration for aclcore.

Pydantic-validated settings for logging, the ACL cache and ancestor
resolution. Services embedding aclcore should build an ``AclConfig``
(directly or via ``load_config_from_env()``) and hand it to
``AclService.from_config()`` rather than reading the environment
themselves.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class AclConfig(BaseModel):
    """Settings for an ``AclService`` and its lookup strategy and cache."""

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for aclcore loggers",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Cache
    cache_enabled: bool = Field(
        default=True,
        description="Cache resolved ACLs. Disabled = every lookup hits the backing store.",
    )
    cache_ttl_seconds: Optional[float] = Field(
        default=300.0,
        gt=0,
        description="Lifetime of a cached ACL in seconds (None = until invalidated or evicted)",
    )
    cache_max_entries: int = Field(
        default=10_000,
        gt=0,
        description="LRU bound on cached ACLs",
    )
    cascade_invalidation: bool = Field(
        default=True,
        description="Invalidating an ACL also evicts its cached descendants",
    )

    # Resolution
    max_depth: int = Field(
        default=32,
        ge=1,
        le=1000,
        description="Maximum parent hops in an ACL ancestor chain",
    )
    store_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Timeout for each backing store call (None = no limit)",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


_TRUTHY = ("true", "1", "yes", "on")


def _optional_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw.strip().lower() in ("", "none", "0"):
        return None
    return float(raw)


def load_config_from_env() -> AclConfig:
    """Load configuration from environment variables.

    This is the ONLY place where os.getenv is used in aclcore.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - ACL_CACHE_ENABLED: Cache resolved ACLs (default: true)
    - ACL_CACHE_TTL_SECONDS: Cache entry lifetime; "none" or 0 disables expiry
    - ACL_CACHE_MAX_ENTRIES: LRU bound
    - ACL_CASCADE_INVALIDATION: Evict descendants on invalidation (default: true)
    - ACL_MAX_DEPTH: Maximum ancestor chain depth
    - ACL_STORE_TIMEOUT_SECONDS: Backing store call timeout; unset = no limit

    Returns:
        AclConfig instance with values from environment or defaults.

    Raises:
        ConfigurationError: A variable is present but invalid.
    """
    import os

    try:
        return AclConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
            cache_enabled=os.getenv("ACL_CACHE_ENABLED", "true").lower() in _TRUTHY,
            cache_ttl_seconds=_optional_float(os.getenv("ACL_CACHE_TTL_SECONDS", "300")),
            cache_max_entries=int(os.getenv("ACL_CACHE_MAX_ENTRIES", "10000")),
            cascade_invalidation=os.getenv("ACL_CASCADE_INVALIDATION", "true").lower() in _TRUTHY,
            max_depth=int(os.getenv("ACL_MAX_DEPTH", "32")),
            store_timeout_seconds=_optional_float(os.getenv("ACL_STORE_TIMEOUT_SECONDS")),
        )
    except (ValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid aclcore configuration: {e}") from e


__all__ = [
    "AclConfig",
    "LogLevel",
    "load_config_from_env",
]
