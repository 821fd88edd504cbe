"""
Shared configuration management for the Generic Cache Server.
"""

import ipaddress
import os
from typing import Any, List, Mapping, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.logging import get_logger


DEFAULT_ADDRESS = "0.0.0.0"
DEFAULT_PORT = 8080
ACCESS_TOKEN_PREFIX = "GCS_KEY_"
FALLBACK_ACCESS_TOKEN = "test"

logger = get_logger("shared.config")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias=AliasChoices("GCS_ENV", "env"))
    log_level: str = Field(default="info", validation_alias=AliasChoices("GCS_LOG_LEVEL", "log_level"))

    # Listener
    address: str = Field(default=DEFAULT_ADDRESS, validation_alias=AliasChoices("ADDRESS", "address"))
    port: int = Field(default=DEFAULT_PORT, validation_alias=AliasChoices("PORT", "port"))

    @field_validator("address", mode="before")
    @classmethod
    def _parse_address(cls, value: Any) -> str:
        """Fall back to the wildcard address on anything that is not IPv4."""
        try:
            return str(ipaddress.IPv4Address(str(value).strip()))
        except ValueError as exc:
            logger.error("Invalid ADDRESS", value=value, error=str(exc))
            logger.debug("Using default ADDRESS", address=DEFAULT_ADDRESS)
            return DEFAULT_ADDRESS

    @field_validator("port", mode="before")
    @classmethod
    def _parse_port(cls, value: Any) -> int:
        """Fall back to the default port on anything outside 0-65535."""
        try:
            port = int(str(value).strip())
        except ValueError as exc:
            logger.error("Invalid PORT", value=value, error=str(exc))
            logger.debug("Using default PORT", port=DEFAULT_PORT)
            return DEFAULT_PORT
        if not 0 <= port <= 65535:
            logger.error("Invalid PORT", value=value, error="out of range")
            logger.debug("Using default PORT", port=DEFAULT_PORT)
            return DEFAULT_PORT
        return port


class CacheServerConfig(BaseConfig):
    """Cache server configuration."""

    service_name: str = "cache"

    # Outbound transport
    outbound_timeout: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("GCS_OUTBOUND_TIMEOUT", "outbound_timeout"),
    )

    # Share one outbound call between concurrent misses on the same key
    coalesce_misses: bool = Field(
        default=False,
        validation_alias=AliasChoices("GCS_COALESCE_MISSES", "coalesce_misses"),
    )

    access_tokens: List[str] = Field(default_factory=list)

    @field_validator("outbound_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if value in ("", "none", "None"):
            return None
        return value


def load_access_tokens(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Collect access tokens from every ``GCS_KEY_*`` environment variable."""
    environ = os.environ if environ is None else environ
    tokens = [
        value
        for name, value in sorted(environ.items())
        if name.upper().startswith(ACCESS_TOKEN_PREFIX)
    ]

    if not tokens:
        logger.error("No access keys provided, using test keys")
        tokens.append(FALLBACK_ACCESS_TOKEN)

    return tokens


def get_config(service_name: str = "cache", **overrides: Any) -> CacheServerConfig:
    """Get configuration for the cache service."""
    if "access_tokens" not in overrides:
        overrides["access_tokens"] = load_access_tokens()
    return CacheServerConfig(service_name=service_name, **overrides)
