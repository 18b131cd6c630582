"""Base provider interface and shared HTTP client management.

All price providers inherit from BaseProvider and implement the get() method.
A shared httpx.AsyncClient is used across all providers to avoid connection
overhead. Tests inject their own client built on ``httpx.MockTransport``.

Transient failures (HTTP 429, 5xx, connect errors, read timeouts and
connection resets) are retried with a 1s/2s/4s back-off before the error is
raised to the fallback chain.

.. code-block:: python

    class MyProvider(BaseProvider):
        name = "myprovider"

        async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
            response = await self._get(f"https://api.example.com/{symbol}")
            return sample_from_float(symbol, response.json()["price"], 6, int(time.time()))
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx

from ..PriceCache import PriceCache
from ..PriceSample import PriceSample

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider errors."""

    pass


class ProviderConfigError(ProviderError):
    """Raised when provider configuration is invalid (e.g., missing API key)."""

    pass


class ProviderHTTPError(ProviderError):
    """Raised when an HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


def is_retryable_status(status_code: int) -> bool:
    """Return True for throttling and server-side errors."""
    return status_code == 429 or status_code >= 500


class BaseProvider(ABC):
    """Abstract base class for price providers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "yahoo", "stooq")
        - get(): Async method returning a PriceSample or None on no-data

    :cvar name: Unique identifier for this provider.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :cvar RETRY_DELAYS: Waits between attempts for transient failures.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0
    RETRY_DELAYS: ClassVar[tuple[float, ...]] = (1.0, 2.0, 4.0)

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        cache: PriceCache | None = None,
    ):
        """Initialize the provider.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        :param client: HTTP client to use instead of the shared one.
        :param cache: Short-TTL sample cache shared by the daemon.
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._client = client
        self.cache = cache

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    @property
    def has_api_key(self) -> bool:
        """Check if this provider has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else self.get_shared_client()

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseProvider._shared_client is None or BaseProvider._shared_client.is_closed:
            BaseProvider._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
            )
        return BaseProvider._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if BaseProvider._shared_client is not None and not BaseProvider._shared_client.is_closed:
            await BaseProvider._shared_client.aclose()
            BaseProvider._shared_client = None

    @abstractmethod
    async def get(self, symbol: str, *, prefer_close: bool = False) -> PriceSample | None:
        """Fetch the current price for a symbol.

        :param symbol: Lookup symbol (e.g., "EURUSD", "XAUUSD").
        :param prefer_close: Prefer the last close over a live quote.
        :returns: PriceSample, or None if the source has no data.
        :raises ProviderError: On infrastructure failures.
        """
        pass

    def _cached(self, symbol: str) -> PriceSample | None:
        if self.cache is None:
            return None
        return self.cache.get(self.name, symbol)

    def _store(self, symbol: str, sample: PriceSample) -> None:
        if self.cache is not None:
            self.cache.set(self.name, symbol, sample)

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request, retrying transient failures.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises ProviderHTTPError: On non-2xx response.
        :raises ProviderError: On network/timeout errors.
        """
        attempts = len(self.RETRY_DELAYS) + 1
        for attempt in range(attempts):
            try:
                response = await self.client.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.timeout,
                )
            except httpx.TransportError as e:
                if attempt < attempts - 1:
                    await self._wait_before_retry(attempt, f"{type(e).__name__}: {e}")
                    continue
                if isinstance(e, httpx.TimeoutException):
                    raise ProviderError(f"Request timeout: {e}") from e
                raise ProviderError(f"Request failed: {e}") from e

            if response.is_success:
                return response

            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            if is_retryable_status(response.status_code) and attempt < attempts - 1:
                await self._wait_before_retry(attempt, f"HTTP {response.status_code}")
                continue
            raise ProviderHTTPError(response.status_code, response.text[:200])

        # Unreachable: the last attempt either returns or raises.
        raise ProviderError(f"Request failed: {url}")

    async def _wait_before_retry(self, attempt: int, reason: str) -> None:
        delay = self.RETRY_DELAYS[attempt]
        logger.warning(
            f"[{self.name}] {reason}, retrying in {delay:g}s "
            f"(attempt {attempt + 1}/{len(self.RETRY_DELAYS)})"
        )
        await asyncio.sleep(delay)
