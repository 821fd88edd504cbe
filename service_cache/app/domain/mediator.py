"""
Request mediator: serve from cache or fetch and store.
"""

import asyncio
import json
from typing import Any, Dict, Optional

from shared.logging import get_logger, set_token_context
from shared.errors import BadRequestError, DecodeError
from shared.metrics import MetricsCollector
from ..adapters.outbound_client import OutboundClient
from ..caching.entry import CacheEntry
from ..caching.store import Cache
from .access import AccessControl
from .models import ClearRequest, ProxyRequest


SUPPORTED_METHODS = frozenset({"get", "post"})


class RequestMediator:
    """Decides between a cache hit and a fetch-and-store.

    Cache hits are keyed purely by ``ProxyRequest.key``; URL, method and body
    play no part in matching. The store lock is taken only for the lookup and
    the insert, never across the outbound call.

    By default concurrent misses on one key each perform their own fetch and
    the last insert wins. With ``coalesce_misses`` they share a single
    in-flight fetch instead.
    """

    def __init__(
        self,
        cache: Cache,
        access: AccessControl,
        client: OutboundClient,
        *,
        metrics: Optional[MetricsCollector] = None,
        coalesce_misses: bool = False,
    ):
        self.cache = cache
        self.access = access
        self.client = client
        self.metrics = metrics
        self.coalesce_misses = coalesce_misses
        self.logger = get_logger("cache.mediator")
        self._in_flight: Dict[str, "asyncio.Future[str]"] = {}

    async def fetch_or_serve(self, request: ProxyRequest) -> Any:
        """Return the parsed response body for ``request.key``."""
        self.access.require(request.token)
        set_token_context(request.token)

        entry = self.cache.lookup(request.key)
        self._update_size()
        if entry is not None:
            self.logger.debug("Returning from cache", key=request.key)
            self._record_lookup(hit=True)
            return self._decode(entry.key, entry.data)

        self._record_lookup(hit=False)

        if request.method not in SUPPORTED_METHODS:
            raise BadRequestError(details={"method": request.method})

        if self.coalesce_misses:
            data = await self._fetch_shared(request)
        else:
            data = await self._fetch_and_store(request)

        return self._decode(request.key, data)

    def clear(self, request: ClearRequest) -> None:
        """Remove ``request.key`` for a valid token, present or not."""
        self.access.require(request.token)
        self.cache.remove(request.key)
        self.logger.info("Cleared cache key", key=request.key)
        self._update_size()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return self.cache.snapshot()

    async def _fetch_and_store(self, request: ProxyRequest) -> str:
        self.logger.debug("Sending request", method=request.method, url=request.url, key=request.key)
        response = await self.client.send(
            request.method,
            request.url,
            headers=request.headers,
            body=request.body,
        )

        # Stored before parsing: a non-JSON body is cached as-is
        entry = CacheEntry.create(
            key=request.key,
            data=response.text,
            ttl_seconds=request.ttl,
            created_by=request.token,
        )
        self.logger.debug(
            "Storing result",
            key=request.key,
            status_code=response.status_code,
            ttl=request.ttl,
        )
        self.cache.insert(entry)
        self._update_size()
        return response.text

    async def _fetch_shared(self, request: ProxyRequest) -> str:
        pending = self._in_flight.get(request.key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_and_store(request))
            self._in_flight[request.key] = pending
            pending.add_done_callback(lambda done, key=request.key: self._forget(key, done))
        else:
            self.logger.debug("Joining in-flight fetch", key=request.key)

        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(pending)

    def _forget(self, key: str, done: "asyncio.Future[str]") -> None:
        # Mark the outcome retrieved even when every waiter was cancelled
        if not done.cancelled():
            done.exception()
        if self._in_flight.get(key) is done:
            del self._in_flight[key]

    def _decode(self, key: str, data: str) -> Any:
        try:
            return json.loads(data)
        except json.JSONDecodeError as exc:
            self.logger.warning("Response body is not valid JSON", key=key, error=str(exc))
            raise DecodeError(key, details={"error": str(exc)}) from exc

    def _record_lookup(self, hit: bool) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(hit)

    def _update_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("cache_entries", len(self.cache))
