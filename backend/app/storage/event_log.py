"""Event log on Redis Streams.

Two append-only streams decouple the pipeline stages:
- indicator-updates: fetcher -> evaluation engine
- action-required: evaluation engine -> action dispatcher

Each stream is read through consumer groups, so every entry reaches one
member of each group and stays pending until that member acknowledges it.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as redis

from app.storage.redis_client import RedisConnection
from core.models.events import ActionRequiredEvent, IndicatorUpdateEvent

logger = logging.getLogger(__name__)

# (entry id, raw fields) as returned by XREADGROUP / XAUTOCLAIM
StreamEntry = tuple[str, dict[Any, Any] | None]


def _entry_id(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class EventLog:
    """Producer and consumer-group operations on the pipeline's streams."""

    def __init__(
        self,
        connection: RedisConnection,
        indicator_stream: str = "indicator-updates",
        action_stream: str = "action-required",
        dead_letter_suffix: str = ":dead-letter",
    ):
        self._connection = connection
        self.indicator_stream = indicator_stream
        self.action_stream = action_stream
        self.dead_letter_suffix = dead_letter_suffix

    # =========================================================================
    # Producers
    # =========================================================================

    async def append(self, stream: str, fields: dict[str, str]) -> str:
        """Append an entry and return its id.

        Raises:
            redis.RedisError: If the write fails.
        """
        entry_id = await self._connection.client.xadd(stream, fields)
        return _entry_id(entry_id)

    async def publish_indicator_update(self, event: IndicatorUpdateEvent) -> str:
        entry_id = await self.append(self.indicator_stream, event.to_fields())
        logger.info(f"Published update to {self.indicator_stream} for {event.fingerprint}")
        return entry_id

    async def publish_action_required(self, event: ActionRequiredEvent) -> str:
        entry_id = await self.append(self.action_stream, event.to_fields())
        logger.info(
            f"Published action required to {self.action_stream} for action "
            f"{event.action_id} (strategy {event.strategy_id})"
        )
        return entry_id

    async def dead_letter(
        self, stream: str, entry_id: str, fields: dict[Any, Any] | None, error: str
    ) -> None:
        """Copy a failed entry to ``<stream><suffix>`` with the error text.

        Never raises; a failed dead-letter write is only logged.
        """
        record: dict[Any, Any] = dict(fields or {})
        record["dead_letter_source_id"] = entry_id
        record["dead_letter_error"] = error[:1000]
        target = f"{stream}{self.dead_letter_suffix}"
        try:
            await self._connection.client.xadd(target, record)
            logger.warning(f"Entry {entry_id} from {stream} moved to {target}")
        except redis.RedisError as e:
            logger.error(f"Failed to dead-letter entry {entry_id} from {stream}: {e}")

    # =========================================================================
    # Consumer groups
    # =========================================================================

    async def ensure_group(self, stream: str, group: str) -> None:
        """Create a consumer group (and the stream) if absent.

        Raises:
            redis.ResponseError: For any error other than "group exists".
        """
        try:
            await self._connection.client.xgroup_create(
                stream, group, id="0", mkstream=True
            )
            logger.info(f"Consumer group {group} ensured on stream {stream}")
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            logger.info(f"Consumer group {group} already exists on {stream}")

    async def read_group(
        self,
        stream: str,
        group: str,
        consumer: str,
        last_id: str = ">",
        count: int = 10,
        block_ms: int | None = 5000,
    ) -> list[StreamEntry]:
        """Read entries for a group member.

        Args:
            last_id: ">" for entries never delivered to the group, "0" to
                re-read this consumer's own pending entries.
            block_ms: Maximum wait for new entries (ignored for pending reads).
        """
        response = await self._connection.client.xreadgroup(
            group,
            consumer,
            {stream: last_id},
            count=count,
            block=block_ms if last_id == ">" else None,
        )
        entries: list[StreamEntry] = []
        for _stream, messages in response or []:
            for entry_id, fields in messages:
                entries.append((_entry_id(entry_id), fields))
        return entries

    async def claim_stale(
        self,
        stream: str,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int = 10,
    ) -> list[StreamEntry]:
        """Take over entries left pending by other (dead) group members."""
        result = await self._connection.client.xautoclaim(
            stream, group, consumer, min_idle_time=min_idle_ms, start_id="0-0", count=count
        )
        messages = result[1] if len(result) > 1 else []
        return [(_entry_id(entry_id), fields) for entry_id, fields in messages]

    async def ack(self, stream: str, group: str, entry_id: str) -> None:
        await self._connection.client.xack(stream, group, entry_id)
