"""
Outbound HTTP client for the cache service.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.errors import TransportError
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class OutboundResponse:
    """Status and raw text of a completed outbound exchange."""
    status_code: int
    text: str


class OutboundClient:
    """Client for forwarding requests to arbitrary URLs."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.timeout = timeout
        self.transport = transport
        self.metrics = metrics
        self.logger = get_logger("cache.outbound_client")

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Any] = None,
    ) -> OutboundResponse:
        """Send one request and read the whole response body as text.

        Any HTTP status counts as a completed exchange. Only failures to
        complete the exchange raise :class:`TransportError`.
        """
        request_kwargs: Dict[str, Any] = {"headers": headers or {}}
        if body is not None:
            request_kwargs["json"] = body

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                self.logger.debug("Sending request", method=method, url=url)
                response = await client.request(method.upper(), url, **request_kwargs)
                self.logger.debug("Reading response", status_code=response.status_code)
                text = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self._record(method, "error", start_time)
            self.logger.warning("Outbound request failed", method=method, url=url, error=str(exc))
            raise TransportError(
                url,
                message=f"Outbound request failed: {exc.__class__.__name__}",
                details={"method": method, "error": str(exc)},
            ) from exc

        self._record(method, "completed", start_time)
        return OutboundResponse(status_code=response.status_code, text=text)

    def _record(self, method: str, outcome: str, start_time: float) -> None:
        if self.metrics:
            self.metrics.record_outbound_request(method, outcome, time.time() - start_time)
