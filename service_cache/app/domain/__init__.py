"""
Domain package for the cache service.

Holds the request models, token-based access control and the mediator that
decides between serving from cache and fetching.
"""

from .access import AccessControl
from .mediator import RequestMediator, SUPPORTED_METHODS
from .models import ProxyRequest, ClearRequest

__all__ = [
    "AccessControl",
    "RequestMediator",
    "SUPPORTED_METHODS",
    "ProxyRequest",
    "ClearRequest",
]
