"""
Adapters package for the cache service.

Contains the HTTP client used for outbound requests. The adapter
encapsulates:

- Request shapes (method, headers, JSON body)
- Timeout configuration
- Error handling that maps transport failures to shared errors

No retries and no circuit breaking: every failure is surfaced once.
"""

from .outbound_client import OutboundClient, OutboundResponse

__all__ = [
    "OutboundClient",
    "OutboundResponse",
]
