"""Fetch indicator series, cache them, and announce the update.

One call per scheduled tick (or on-demand refresh):
1. Return the cached series if it is still fresh (unless forced)
2. Otherwise fetch from the provider and validate the body
3. Cache the series with an interval-based TTL
4. Publish an IndicatorUpdateEvent

Provider failures abort the cycle without touching the cache or the log;
the next tick retries. Cache and log are not written atomically: a failed
publish leaves the new cache entry in place.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import redis.asyncio as redis

from app.clients import AlphaVantageClient, ProviderError, RateLimitError
from app.storage.event_log import EventLog
from app.storage.indicator_cache import IndicatorCache
from core.models.events import IndicatorUpdateEvent
from core.models.indicator import IndicatorRequest

logger = logging.getLogger(__name__)


class IndicatorFetcher:
    """Cache-aware fetcher and publisher of indicator series."""

    def __init__(
        self,
        client: AlphaVantageClient,
        cache: IndicatorCache,
        event_log: EventLog,
    ):
        self.client = client
        self.cache = cache
        self.event_log = event_log

    async def fetch(
        self, request: IndicatorRequest, force_refresh: bool = False
    ) -> Any | None:
        """Get the series for ``request``.

        Args:
            request: The indicator to fetch.
            force_refresh: Skip the freshness check and always hit the provider.

        Returns:
            The series, or None if this cycle failed.
        """
        key = request.fingerprint

        if not force_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached.data

        logger.info(f"Fetching fresh data for {key}")
        try:
            response = await self.client.get_indicator(request)
        except RateLimitError as e:
            logger.warning(f"Rate limit likely hit for {key}. Data not cached: {e}")
            return None
        except ProviderError as e:
            logger.warning(f"Invalid data from provider for {key}: {e}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Provider request failed for {key}: {e}")
            return None

        metadata = {**response.metadata, "last_refreshed": response.last_refreshed}
        try:
            await self.cache.put(key, response.series, metadata, request.ttl_seconds)
        except redis.RedisError as e:
            logger.error(f"Failed to cache {key}: {e}")
            return None

        event = IndicatorUpdateEvent(
            fingerprint=key,
            indicator_type=request.indicator_type,
            symbol=request.symbol,
            interval=request.interval,
            parameters=request.parameters,
            data_source=request.data_source,
            last_refreshed=response.last_refreshed,
        )
        try:
            await self.event_log.publish_indicator_update(event)
        except redis.RedisError as e:
            logger.error(f"Error publishing update for {key}: {e}")

        return response.series
