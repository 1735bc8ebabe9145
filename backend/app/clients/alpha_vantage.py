"""Alpha Vantage REST client for technical indicator series."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from core.models.indicator import IndicatorRequest

META_DATA_KEY = "Meta Data"
RATE_LIMIT_MARKERS = ("API call frequency", "rate limit")


class ProviderError(Exception):
    """The provider did not return a usable indicator series."""


class RateLimitError(ProviderError):
    """The provider answered with a rate-limit notice instead of data."""


class InvalidResponseError(ProviderError):
    """The response lacks the metadata or data block, or carries an error."""


@dataclass
class IndicatorResponse:
    """Validated provider response."""

    metadata: dict[str, Any]
    series: dict[str, Any]
    last_refreshed: str | None = None


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 75):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


def parse_indicator_response(data: Any) -> IndicatorResponse:
    """Validate a raw response body and split it into metadata and series.

    Raises:
        RateLimitError: If the body is a rate-limit notice.
        InvalidResponseError: If the body carries an error or lacks a
            metadata or data block.
    """
    if not isinstance(data, dict):
        raise InvalidResponseError(f"Unexpected response type: {type(data).__name__}")

    notice = data.get("Note") or data.get("Information") or ""
    if isinstance(notice, str) and any(m in notice for m in RATE_LIMIT_MARKERS):
        raise RateLimitError(notice)

    if "Error Message" in data:
        raise InvalidResponseError(str(data["Error Message"]))

    metadata = data.get(META_DATA_KEY)
    if not isinstance(metadata, dict):
        raise InvalidResponseError(f"Missing '{META_DATA_KEY}' block")

    series = next(
        (v for k, v in data.items() if k != META_DATA_KEY and isinstance(v, dict)),
        None,
    )
    if not series:
        raise InvalidResponseError("Missing indicator data block")

    # Metadata keys are numbered per function, e.g. "3: Last Refreshed"
    last_refreshed = next(
        (str(v) for k, v in metadata.items() if k.endswith("Last Refreshed")),
        None,
    )
    return IndicatorResponse(metadata=metadata, series=series, last_refreshed=last_refreshed)


class AlphaVantageClient:
    """Alpha Vantage query API client."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://www.alphavantage.co",
        timeout: float = 30.0,
        calls_per_minute: int = 75,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.rate_limiter = RateLimiter(calls_per_minute)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_indicator(self, request: IndicatorRequest) -> IndicatorResponse:
        """
        Fetch one indicator series.

        Args:
            request: Indicator type (the provider's ``function``), symbol,
                interval and extra parameters such as ``time_period``.

        Returns:
            Validated metadata and series.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx status.
            ProviderError: If the body is not a usable series.
        """
        params: dict[str, Any] = {
            **request.parameters,
            "function": request.indicator_type,
            "symbol": request.symbol,
            "interval": request.interval,
            "apikey": self.api_key,
        }

        await self.rate_limiter.acquire()
        client = await self._get_client()
        response = await client.get("/query", params=params)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError(f"Response is not JSON: {e}") from e
        return parse_indicator_response(data)
