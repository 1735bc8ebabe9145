"""Tests for the indicator fetcher."""

import httpx
import pytest
import redis.asyncio as redis
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from app.clients import IndicatorResponse, InvalidResponseError, RateLimitError
from app.services.indicator_fetcher import IndicatorFetcher
from app.storage.indicator_cache import CacheEntry
from core.models.indicator import IndicatorRequest

SERIES = {"2024-01-05": {"SMA": "155.0"}, "2024-01-04": {"SMA": "154.0"}}


@pytest.fixture
def request_():
    return IndicatorRequest(
        indicator_type="SMA", symbol="AAPL", interval="daily", parameters={"time_period": 20}
    )


@pytest.fixture
def fetcher():
    client = MagicMock()
    client.get_indicator = AsyncMock(
        return_value=IndicatorResponse(
            metadata={"1: Symbol": "AAPL"}, series=SERIES, last_refreshed="2024-01-05"
        )
    )
    cache = MagicMock()
    cache.get = AsyncMock(return_value=None)
    cache.put = AsyncMock()
    event_log = MagicMock()
    event_log.publish_indicator_update = AsyncMock(return_value="1-0")
    return IndicatorFetcher(client, cache, event_log)


def cached(fingerprint):
    return CacheEntry(
        fingerprint=fingerprint,
        data={"cached": True},
        fetched_at=datetime.now(timezone.utc),
        ttl_seconds=90000,
    )


class TestIndicatorFetcher:
    """Tests for IndicatorFetcher.fetch."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, fetcher, request_):
        """Test a cache hit skips the provider."""
        fetcher.cache.get.return_value = cached(request_.fingerprint)

        data = await fetcher.fetch(request_)

        assert data == {"cached": True}
        fetcher.client.get_indicator.assert_not_awaited()
        fetcher.event_log.publish_indicator_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_force_refresh_ignores_cache(self, fetcher, request_):
        """Test forced refresh bypasses the cache."""
        fetcher.cache.get.return_value = cached(request_.fingerprint)

        data = await fetcher.fetch(request_, force_refresh=True)

        assert data == SERIES
        fetcher.cache.get.assert_not_awaited()
        fetcher.client.get_indicator.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_miss_fetches_caches_and_publishes(self, fetcher, request_):
        """Test a cache miss fetches, caches and publishes."""
        data = await fetcher.fetch(request_)

        assert data == SERIES
        key, series, metadata, ttl = fetcher.cache.put.call_args[0]
        assert key == request_.fingerprint
        assert series == SERIES
        assert metadata["last_refreshed"] == "2024-01-05"
        assert ttl == 90000

        event = fetcher.event_log.publish_indicator_update.call_args[0][0]
        assert event.fingerprint == request_.fingerprint
        assert event.parameters == {"time_period": 20}
        assert event.last_refreshed == "2024-01-05"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            RateLimitError("API call frequency"),
            InvalidResponseError("Error Message"),
            httpx.ConnectError("refused"),
        ],
    )
    async def test_provider_failure_aborts_cycle(self, fetcher, request_, error):
        """Test provider failures abort the cycle."""
        fetcher.client.get_indicator.side_effect = error

        assert await fetcher.fetch(request_) is None
        fetcher.cache.put.assert_not_awaited()
        fetcher.event_log.publish_indicator_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_write_failure_skips_publish(self, fetcher, request_):
        """Test a failed cache write skips the publish."""
        fetcher.cache.put.side_effect = redis.ConnectionError("down")

        assert await fetcher.fetch(request_) is None
        fetcher.event_log.publish_indicator_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_cache(self, fetcher, request_):
        """Test a failed publish keeps the cache entry."""
        fetcher.event_log.publish_indicator_update.side_effect = redis.ConnectionError("down")

        data = await fetcher.fetch(request_)

        assert data == SERIES
        fetcher.cache.put.assert_awaited_once()
