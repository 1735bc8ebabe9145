"""Freshness cache for indicator series.

Each fetched series is stored under its indicator fingerprint with a TTL
derived from the series interval. Entries expire passively; there is no
eviction sweep.

Data structure:
- indicator:{canonical request JSON} -> JSON {data, metadata, fetched_at, ttl_seconds}
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import orjson
import redis.asyncio as redis
from pydantic import BaseModel, Field, ValidationError

from app.storage.redis_client import RedisConnection

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """A cached indicator series."""

    fingerprint: str
    data: Any
    metadata: dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime
    ttl_seconds: int


class IndicatorCache:
    """Read/write indicator series keyed by fingerprint."""

    def __init__(self, connection: RedisConnection):
        self._connection = connection

    async def put(
        self,
        fingerprint: str,
        data: Any,
        metadata: dict[str, Any],
        ttl_seconds: int,
    ) -> CacheEntry:
        """Store a series, replacing any previous entry.

        Raises:
            redis.RedisError: If the write fails.
        """
        entry = CacheEntry(
            fingerprint=fingerprint,
            data=data,
            metadata=metadata,
            fetched_at=datetime.now(timezone.utc),
            ttl_seconds=ttl_seconds,
        )
        payload = orjson.dumps(entry.model_dump(mode="json"))
        await self._connection.client.set(fingerprint, payload, ex=ttl_seconds)
        logger.debug(f"Cached {fingerprint} (ttl={ttl_seconds}s)")
        return entry

    async def get(self, fingerprint: str) -> CacheEntry | None:
        """Get an unexpired entry.

        Returns:
            The entry, or None on a miss, a read error, or a malformed value.
        """
        try:
            raw = await self._connection.client.get(fingerprint)
        except redis.RedisError as e:
            logger.warning(f"Redis GET error for {fingerprint}: {e}")
            return None

        if raw is None:
            logger.debug(f"Cache miss: {fingerprint}")
            return None

        try:
            obj = orjson.loads(raw)
            obj.setdefault("fingerprint", fingerprint)
            return CacheEntry.model_validate(obj)
        except (orjson.JSONDecodeError, AttributeError, ValidationError) as e:
            logger.warning(f"Malformed cache entry for {fingerprint}: {e}")
            return None
