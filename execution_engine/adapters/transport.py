"""
Exchange Adapter - HTTP Transport.

============================================================
PURPOSE
============================================================
Shared aiohttp plumbing for the exchange variants.

- Takes a rate-limiter slot for (exchange, endpoint) first
- Bounded ClientTimeout on every request
- aiohttp.ClientError / timeouts -> NetworkError
- Non-JSON bodies -> ExchangeProtocolError
- Masked request/response logging and per-endpoint metrics

The transport sends the body string exactly as signed and
never re-encodes the URL.

============================================================
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp
from yarl import URL

from core.exceptions import ExchangeProtocolError, NetworkError

from ..config import TimeoutConfig
from ..rate_limiter import RateLimiter
from .logging_utils import AdapterLogger
from .metrics import AdapterMetrics


logger = logging.getLogger(__name__)


class HttpTransport:
    """
    One aiohttp session per adapter.

    Example:
        transport = HttpTransport("binance", rate_limiter)
        status, payload = await transport.request("GET", url, "/fapi/v2/balance")
    """

    def __init__(
        self,
        exchange_id: str,
        rate_limiter: RateLimiter,
        timeout: Optional[TimeoutConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[AdapterMetrics] = None,
    ):
        self.exchange_id = exchange_id
        self._rate_limiter = rate_limiter
        self._timeout = timeout or TimeoutConfig()
        self._session = session
        self._owns_session = session is None
        self._metrics = metrics or AdapterMetrics(exchange_id)
        self._log = AdapterLogger(exchange_id)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=self._timeout.total_seconds,
                    connect=self._timeout.connect_seconds,
                ),
            )
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        endpoint: str,
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """
        Send a signed request.

        Args:
            method: HTTP method
            url: Full URL including any (already signed) query string
            endpoint: Endpoint path used as the rate-limit key
            body: Exact request body that was signed
            headers: Request headers

        Returns:
            (HTTP status, decoded JSON payload)

        Raises:
            RateLimitError: Local quota exhausted
            NetworkError: Connection failure or timeout
            ExchangeProtocolError: Body is not JSON
        """
        self._rate_limiter.acquire(self.exchange_id, endpoint)

        request_id = self._log.log_request(method, url, headers=headers, body=body)
        start = time.monotonic()

        try:
            session = self._get_session()
            async with session.request(
                method,
                URL(url, encoded=True),
                data=body,
                headers=headers,
            ) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError as e:
            latency_ms = (time.monotonic() - start) * 1000
            self._metrics.record_request(endpoint, latency_ms, False, "Timeout")
            raise NetworkError(
                f"{self.exchange_id} {endpoint} timed out after {self._timeout.total_seconds}s",
                exchange_id=self.exchange_id,
                endpoint=endpoint,
                cause=e,
            ) from e
        except aiohttp.ClientError as e:
            latency_ms = (time.monotonic() - start) * 1000
            self._metrics.record_request(endpoint, latency_ms, False, type(e).__name__)
            raise NetworkError(
                f"{self.exchange_id} {endpoint} request failed: {e}",
                exchange_id=self.exchange_id,
                endpoint=endpoint,
                cause=e,
            ) from e

        latency_ms = (time.monotonic() - start) * 1000

        try:
            payload = json.loads(text) if text else {}
        except ValueError as e:
            self._metrics.record_request(endpoint, latency_ms, False, "InvalidJson")
            self._log.log_response(request_id, status, latency_ms, False, text[:200])
            raise ExchangeProtocolError(
                f"{self.exchange_id} {endpoint} returned non-JSON response (HTTP {status})",
                exchange_id=self.exchange_id,
                provider_message=text[:500],
                http_status=status,
                cause=e,
            ) from e

        success = 200 <= status < 300
        self._metrics.record_request(endpoint, latency_ms, success, None if success else f"HTTP{status}")
        self._log.log_response(request_id, status, latency_ms, success)
        return status, payload

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
