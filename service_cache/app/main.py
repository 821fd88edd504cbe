"""
Cache service for the Generic Cache Server.
"""

from typing import Any, Dict, Optional

import httpx
from fastapi.responses import JSONResponse, PlainTextResponse

from shared import SERVICE_VERSION
from shared.base_service import BaseService
from shared.config import CacheServerConfig
from .adapters.outbound_client import OutboundClient
from .caching.store import Cache
from .domain.access import AccessControl
from .domain.mediator import RequestMediator
from .domain.models import ClearRequest, ProxyRequest


class CacheService(BaseService):
    """Cache service implementation.

    The cache, token set and outbound client are built here once and handed
    to the mediator; nothing is module-global. Tests pass their own
    ``cache`` or ``transport`` to observe or fake the collaborators.
    """

    def __init__(
        self,
        config: Optional[CacheServerConfig] = None,
        *,
        cache: Optional[Cache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__("cache", config)
        self.cache = cache if cache is not None else Cache()
        self.access = AccessControl(self.config.access_tokens)
        self.client = OutboundClient(
            self.config.outbound_timeout,
            transport=transport,
            metrics=self.metrics,
        )
        self.mediator = RequestMediator(
            self.cache,
            self.access,
            self.client,
            metrics=self.metrics,
            coalesce_misses=self.config.coalesce_misses,
        )

        self.logger.debug(
            "Config read",
            address=self.config.address,
            port=self.config.port,
            access_tokens=len(self.access),
            coalesce_misses=self.config.coalesce_misses,
        )

        self._setup_cache_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.cache_service = self

    def _setup_cache_routes(self):
        """Set up cache-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cache",
                "message": "Generic Cache Server",
                "version": SERVICE_VERSION,
            }

        @self.app.get("/alive", response_class=PlainTextResponse)
        async def alive():
            """Liveness check returning the server version."""
            return SERVICE_VERSION

        @self.app.post("/request")
        async def send_request(request: ProxyRequest):
            """Serve ``request.key`` from cache or fetch it."""
            result = await self.mediator.fetch_or_serve(request)
            return JSONResponse(status_code=200, content=result)

        @self.app.post("/clear", response_class=PlainTextResponse)
        async def clear(request: ClearRequest):
            """Remove one key from the cache."""
            self.mediator.clear(request)
            return "Done"

        @self.app.get("/stats")
        async def stats():
            """Full cache contents, expired-but-unswept entries included."""
            return self.mediator.stats()

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "cache_entries": len(self.cache),
            "access_tokens": len(self.access),
        }


def create_app(config: Optional[CacheServerConfig] = None):
    """Create FastAPI application."""
    service = CacheService(config)
    return service.app


def main():
    """Run the cache server with configuration from the environment."""
    service = CacheService()
    service.logger.info("Server starting", address=service.config.address, port=service.config.port)
    service.run()


if __name__ == "__main__":
    main()
