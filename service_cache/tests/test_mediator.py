"""
Unit tests for the request mediator.
"""

import pytest
import asyncio
import gc
import json
import httpx
from typing import List

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.adapters.outbound_client import OutboundClient
from service_cache.app.caching import Cache, CacheEntry
from service_cache.app.domain import AccessControl, ClearRequest, ProxyRequest, RequestMediator
from shared.errors import BadRequestError, DecodeError, TransportError, UnauthorizedError
from shared.metrics import MetricsCollector


class VersionedEndpoint:
    """Fake upstream returning {"v": n} with n counting calls."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.body = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.body is not None:
            return httpx.Response(200, text=self.body)
        return httpx.Response(200, json={"v": len(self.requests)})

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_request(**overrides) -> ProxyRequest:
    fields = {
        "token": "secret",
        "url": "https://upstream.example.com/data",
        "key": "a",
        "headers": {},
        "method": "get",
        "ttl": 60,
    }
    fields.update(overrides)
    return ProxyRequest(**fields)


class TestRequestMediator:
    """Test cases for RequestMediator."""

    @pytest.fixture
    def endpoint(self):
        """Create fake upstream."""
        return VersionedEndpoint()

    @pytest.fixture
    def cache(self):
        """Create Cache instance."""
        return Cache()

    @pytest.fixture
    def metrics(self):
        """Create metrics collector with its own registry."""
        return MetricsCollector("cache")

    @pytest.fixture
    def mediator(self, cache, endpoint, metrics):
        """Create RequestMediator wired to the fake upstream."""
        client = OutboundClient(transport=httpx.MockTransport(endpoint))
        return RequestMediator(cache, AccessControl(["secret"]), client, metrics=metrics)

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, mediator, cache, endpoint):
        """Test a miss calls upstream and caches the body."""
        result = await mediator.fetch_or_serve(make_request())

        assert result == {"v": 1}
        assert endpoint.calls == 1

        entry = cache.lookup("a")
        assert entry.as_json() == {"v": 1}
        assert entry.created_by == "secret"
        assert entry.ttl() == 60_000

    @pytest.mark.asyncio
    async def test_hit_returns_cached_value_without_fetch(self, mediator, endpoint):
        """Test the second call within TTL returns the first value."""
        first = await mediator.fetch_or_serve(make_request())
        second = await mediator.fetch_or_serve(make_request())

        assert first == {"v": 1}
        assert second == {"v": 1}
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_hit_ignores_url_method_and_body(self, mediator, endpoint):
        """Test cache matching uses only the key."""
        await mediator.fetch_or_serve(make_request())

        result = await mediator.fetch_or_serve(
            make_request(url="https://other.example.com/", method="post", body={"q": 1})
        )

        assert result == {"v": 1}
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_hit_skips_method_validation(self, mediator, cache, endpoint):
        """Test a cached key is served even for an unsupported method."""
        cache.insert(CacheEntry.create("a", '{"cached": true}', 60, "secret"))

        result = await mediator.fetch_or_serve(make_request(method="delete"))

        assert result == {"cached": True}
        assert endpoint.calls == 0

    @pytest.mark.asyncio
    async def test_clear_then_fetch_returns_current_value(self, mediator, endpoint):
        """Test clearing a key forces a fresh fetch."""
        assert await mediator.fetch_or_serve(make_request()) == {"v": 1}

        mediator.clear(ClearRequest(token="secret", key="a"))

        assert await mediator.fetch_or_serve(make_request()) == {"v": 2}
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, mediator, endpoint):
        """Test a zero-lifetime entry is never served."""
        await mediator.fetch_or_serve(make_request(ttl=-1))
        result = await mediator.fetch_or_serve(make_request(ttl=-1))

        assert result == {"v": 2}
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_bad_token_rejected_without_side_effects(self, mediator, cache, endpoint):
        """Test unauthorized fetch touches neither cache nor network."""
        cache.insert(CacheEntry.create("a", '{"v": 0}', 60, "secret"))
        before = cache.snapshot()

        with pytest.raises(UnauthorizedError):
            await mediator.fetch_or_serve(make_request(token="wrong", key="b"))

        with pytest.raises(UnauthorizedError):
            await mediator.fetch_or_serve(make_request(token="wrong", key="a"))

        assert endpoint.calls == 0
        assert cache.snapshot() == before

    @pytest.mark.asyncio
    async def test_unsupported_method_is_bad_request(self, mediator, cache, endpoint):
        """Test unsupported methods are rejected before any fetch."""
        for method in ("delete", "put", "GET"):
            with pytest.raises(BadRequestError) as exc_info:
                await mediator.fetch_or_serve(make_request(method=method))
            assert exc_info.value.message == "Unknown/invalid method"

        assert endpoint.calls == 0
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_post_sends_headers_and_json_body(self, mediator, endpoint):
        """Test outbound request carries method, headers and body."""
        await mediator.fetch_or_serve(
            make_request(method="post", headers={"X-Api-Key": "abc"}, body={"query": "x"})
        )

        sent = endpoint.requests[0]
        assert sent.method == "POST"
        assert sent.headers["X-Api-Key"] == "abc"
        assert json.loads(sent.content) == {"query": "x"}

    @pytest.mark.asyncio
    async def test_get_without_body_sends_empty_content(self, mediator, endpoint):
        """Test no body is attached when none is given."""
        await mediator.fetch_or_serve(make_request())

        sent = endpoint.requests[0]
        assert sent.method == "GET"
        assert sent.content == b""

    @pytest.mark.asyncio
    async def test_non_json_body_is_cached_then_decode_error(self, mediator, cache, endpoint):
        """Test an unparseable body is stored before the parse fails."""
        endpoint.body = "<html>oops</html>"

        with pytest.raises(DecodeError):
            await mediator.fetch_or_serve(make_request())

        entry = cache.lookup("a")
        assert entry is not None
        assert entry.data == "<html>oops</html>"

        # The polluted entry keeps failing until cleared or expired
        with pytest.raises(DecodeError):
            await mediator.fetch_or_serve(make_request())
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_error_status_is_cached(self, cache, metrics):
        """Test any completed exchange is stored, whatever the status."""
        client = OutboundClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "boom"}))
        )
        mediator = RequestMediator(cache, AccessControl(["secret"]), client, metrics=metrics)

        result = await mediator.fetch_or_serve(make_request())

        assert result == {"error": "boom"}
        assert cache.lookup("a") is not None

    @pytest.mark.asyncio
    async def test_transport_failure_not_cached(self, cache, metrics):
        """Test transport failures surface and leave the cache alone."""
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = OutboundClient(transport=httpx.MockTransport(refuse), metrics=metrics)
        mediator = RequestMediator(cache, AccessControl(["secret"]), client, metrics=metrics)

        with pytest.raises(TransportError):
            await mediator.fetch_or_serve(make_request())

        assert len(cache) == 0
        assert metrics.get_sample_value(
            "outbound_requests_total", {"method": "get", "outcome": "error"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_records_hits_and_misses(self, mediator, metrics):
        """Test cache lookup metrics."""
        await mediator.fetch_or_serve(make_request())
        await mediator.fetch_or_serve(make_request())
        await mediator.fetch_or_serve(make_request())

        assert metrics.get_sample_value("cache_misses_total") == 1.0
        assert metrics.get_sample_value("cache_hits_total") == 2.0
        assert metrics.get_sample_value("cache_entries") == 1.0

    @pytest.mark.asyncio
    async def test_entries_gauge_follows_lookup_sweep(self, mediator, cache, metrics):
        """Test the entries gauge drops when a lookup sweeps expired entries."""
        await mediator.fetch_or_serve(make_request(key="a", ttl=-1))
        assert metrics.get_sample_value("cache_entries") == 1.0

        with pytest.raises(BadRequestError):
            await mediator.fetch_or_serve(make_request(key="b", method="patch"))

        assert len(cache) == 0
        assert metrics.get_sample_value("cache_entries") == 0.0

    def test_clear_with_bad_token(self, mediator, cache):
        """Test clear rejects unknown tokens and leaves the key."""
        cache.insert(CacheEntry.create("a", "{}", 60, "secret"))

        with pytest.raises(UnauthorizedError):
            mediator.clear(ClearRequest(token="wrong", key="a"))

        assert "a" in cache

    def test_clear_absent_key(self, mediator, cache):
        """Test clearing an absent key succeeds."""
        mediator.clear(ClearRequest(token="secret", key="missing"))

        assert len(cache) == 0

    def test_stats_returns_snapshot(self, mediator, cache):
        """Test stats mirrors the cache snapshot."""
        cache.insert(CacheEntry.create("a", '{"x": 1}', 60, "secret"))

        assert mediator.stats() == cache.snapshot()


class TestConcurrentMisses:
    """Test cases for concurrent misses on one key."""

    @pytest.fixture
    def slow_endpoint(self):
        """Create fake upstream that yields before answering."""
        calls = []

        async def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"v": len(calls)})

        handler.calls = calls
        return handler

    def make_mediator(self, endpoint, coalesce: bool) -> RequestMediator:
        client = OutboundClient(transport=httpx.MockTransport(endpoint))
        return RequestMediator(Cache(), AccessControl(["secret"]), client, coalesce_misses=coalesce)

    @pytest.mark.asyncio
    async def test_duplicate_fetches_by_default(self, slow_endpoint):
        """Test concurrent misses each fetch and the last write wins."""
        mediator = self.make_mediator(slow_endpoint, coalesce=False)

        results = await asyncio.gather(
            mediator.fetch_or_serve(make_request()),
            mediator.fetch_or_serve(make_request()),
        )

        assert len(slow_endpoint.calls) == 2
        assert results == [{"v": 2}, {"v": 2}]
        assert mediator.cache.lookup("a").as_json() == {"v": 2}

    @pytest.mark.asyncio
    async def test_coalesced_misses_share_one_fetch(self, slow_endpoint):
        """Test coalescing issues one outbound call for concurrent misses."""
        mediator = self.make_mediator(slow_endpoint, coalesce=True)

        results = await asyncio.gather(*[mediator.fetch_or_serve(make_request()) for _ in range(5)])

        assert len(slow_endpoint.calls) == 1
        assert results == [{"v": 1}] * 5
        assert mediator._in_flight == {}

    @pytest.mark.asyncio
    async def test_failure_after_all_waiters_cancelled_is_retrieved(self):
        """Test a shared fetch failing with no waiters left is not reported as unretrieved."""
        async def refuse(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            raise httpx.ConnectError("connection refused", request=request)

        mediator = self.make_mediator(refuse, coalesce=True)
        loop = asyncio.get_running_loop()
        reported = []
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            waiter = asyncio.ensure_future(mediator.fetch_or_serve(make_request()))
            await asyncio.sleep(0)
            assert "a" in mediator._in_flight

            waiter.cancel()
            with pytest.raises(asyncio.CancelledError):
                await waiter

            await asyncio.sleep(0.05)
            assert mediator._in_flight == {}

            del waiter
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert not [c for c in reported if "never retrieved" in c.get("message", "")]
        assert len(mediator.cache) == 0

    @pytest.mark.asyncio
    async def test_coalesced_failure_reaches_every_waiter(self):
        """Test a shared fetch failure is raised to all waiters and not kept."""
        async def refuse(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.01)
            raise httpx.ConnectError("connection refused", request=request)

        mediator = self.make_mediator(refuse, coalesce=True)

        results = await asyncio.gather(
            mediator.fetch_or_serve(make_request()),
            mediator.fetch_or_serve(make_request()),
            return_exceptions=True,
        )

        assert all(isinstance(result, TransportError) for result in results)
        assert mediator._in_flight == {}
        assert len(mediator.cache) == 0
