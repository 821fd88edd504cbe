"""
Request models for the cache service.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


# About a century; keeps expires_at inside the datetime range
MAX_TTL_SECONDS = 100 * 365 * 24 * 60 * 60


class ProxyRequest(BaseModel):
    """Request model for fetch-or-serve."""
    token: str = Field(..., description="Access token")
    url: str = Field(..., description="Outbound URL")
    key: str = Field(..., description="Cache key chosen by the caller")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers sent with the outbound request")
    method: str = Field(..., description="Outbound method, 'get' or 'post'")
    body: Optional[Any] = Field(None, description="JSON payload for the outbound request")
    ttl: int = Field(
        ...,
        ge=-MAX_TTL_SECONDS,
        le=MAX_TTL_SECONDS,
        description="Seconds the response stays cached",
    )


class ClearRequest(BaseModel):
    """Request model for clearing one cache key."""
    token: str
    key: str
