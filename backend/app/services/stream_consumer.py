"""Consumer-group read loop shared by the evaluation and action consumers.

Delivery is at-least-once:
- on start, the consumer re-reads its own pending entries (delivered to it
  before a crash but never acknowledged), then switches to new entries
- when idle, it claims entries left pending by dead group members
- every entry is acknowledged after handling, including when handling fails;
  failures are copied to the stream's dead-letter log first
- malformed entries are acknowledged and dropped
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from typing import Any

import redis.asyncio as redis

from app.storage.event_log import EventLog, StreamEntry
from core.models.events import MalformedEventError

logger = logging.getLogger(__name__)


def default_consumer_name(prefix: str) -> str:
    """Unique member name for this process, e.g. ``evaluator_host_1234``."""
    return f"{prefix}_{socket.gethostname()}_{os.getpid()}"


class StreamConsumer:
    """Base class: subclasses implement ``handle(fields)``."""

    def __init__(
        self,
        event_log: EventLog,
        stream: str,
        group: str,
        consumer: str,
        batch_size: int = 10,
        block_ms: int = 5000,
        retry_delay: float = 5.0,
        claim_min_idle_ms: int | None = 60000,
    ):
        self.event_log = event_log
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.retry_delay = retry_delay
        self.claim_min_idle_ms = claim_min_idle_ms

        self._running = False
        self._task: asyncio.Task | None = None
        self.processed = 0
        self.failed = 0

    async def handle(self, fields: dict[Any, Any] | None) -> None:
        """Process one entry.

        Raises:
            MalformedEventError: If the entry cannot be parsed (dropped).
            Exception: Any other error (dead-lettered).
        """
        raise NotImplementedError

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def setup(self) -> None:
        """Ensure the consumer group exists.

        Raises:
            redis.ResponseError: Setup errors other than "group exists".
        """
        await self.event_log.ensure_group(self.stream, self.group)

    async def start(self) -> None:
        """Create the group and run the loop in a background task."""
        await self.setup()
        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"consumer:{self.consumer}")
        logger.info(f"Consumer {self.consumer} starting to listen to stream {self.stream}...")

    async def stop(self, timeout: float | None = None) -> None:
        """Stop after the in-flight entry is acknowledged.

        Waits up to ``timeout`` (default: one poll wait plus a margin) for the
        loop to exit, then cancels it. A cancelled entry stays pending and is
        redelivered later.
        """
        self._running = False
        if self._task is None:
            return

        if timeout is None:
            timeout = self.block_ms / 1000 + 5.0
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Consumer {self.consumer} did not stop in {timeout}s, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"Consumer {self.consumer} stopped")

    async def run_forever(self) -> None:
        """Run the loop in the current task (used by standalone workers)."""
        await self.setup()
        self._running = True
        await self._run()

    # =========================================================================
    # Loop
    # =========================================================================

    async def _run(self) -> None:
        last_id = "0"  # Own pending entries first
        while self._running:
            try:
                entries = await self.event_log.read_group(
                    self.stream,
                    self.group,
                    self.consumer,
                    last_id=last_id,
                    count=self.batch_size,
                    block_ms=self.block_ms,
                )
                if not entries:
                    if last_id == "0":
                        last_id = ">"
                    else:
                        entries = await self._claim_stale()

                for entry_id, fields in entries:
                    await self.process_entry(entry_id, fields)

            except asyncio.CancelledError:
                raise
            except redis.RedisError as e:
                logger.error(f"Consumer {self.consumer} error reading from stream {self.stream}: {e}")
                await asyncio.sleep(self.retry_delay)

    async def _claim_stale(self) -> list[StreamEntry]:
        if self.claim_min_idle_ms is None:
            return []
        entries = await self.event_log.claim_stale(
            self.stream,
            self.group,
            self.consumer,
            min_idle_ms=self.claim_min_idle_ms,
            count=self.batch_size,
        )
        if entries:
            logger.info(f"Consumer {self.consumer} claimed {len(entries)} stale entries")
        return entries

    async def process_entry(self, entry_id: str, fields: dict[Any, Any] | None) -> None:
        """Handle one entry and acknowledge it whatever the outcome."""
        logger.debug(f"Consumer {self.consumer} received message {entry_id}")
        try:
            await self.handle(fields)
            self.processed += 1
        except MalformedEventError as e:
            self.failed += 1
            logger.error(f"Skipping malformed message {entry_id}: {e}")
        except Exception as e:
            self.failed += 1
            logger.error(f"Error processing message {entry_id}: {e}", exc_info=True)
            await self.event_log.dead_letter(self.stream, entry_id, fields, repr(e))

        await self.event_log.ack(self.stream, self.group, entry_id)
        logger.debug(f"Acknowledged message {entry_id}")
