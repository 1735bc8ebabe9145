"""Redis connection shared by the indicator cache and the event log.

The connection is constructed once at startup and handed to the components
that need it; there is no module-level client.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

logger = logging.getLogger(__name__)


class RedisConnection:
    """Owns a Redis connection pool with an explicit connect/close lifecycle."""

    def __init__(self, url: str, max_connections: int = 20):
        self.url = url
        self.max_connections = max_connections
        self._pool: ConnectionPool | None = None
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Open the pool and verify the server answers.

        Raises:
            redis.RedisError: If Redis cannot be reached. Callers treat this
                as fatal at startup.
        """
        if self._client is not None:
            return

        self._pool = ConnectionPool.from_url(
            self.url,
            max_connections=self.max_connections,
            decode_responses=False,  # Payloads are encoded with orjson
        )
        client = redis.Redis(connection_pool=self._pool)
        try:
            await client.ping()
        except redis.RedisError:
            await client.aclose()
            await self._pool.disconnect()
            self._pool = None
            raise

        self._client = client
        logger.info(f"Redis connected: {self.url}")

    async def close(self) -> None:
        """Close the client and its pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

        logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """The connected client.

        Raises:
            RuntimeError: If ``connect()`` has not been called.
        """
        if self._client is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def ping(self) -> bool:
        """Check if Redis is responsive."""
        if self._client is None:
            return False

        try:
            return await self._client.ping()
        except redis.RedisError:
            return False
