"""Forward action-required events to an executor.

Execution itself (orders, notifications) lives behind the ActionExecutor
protocol. Each event reaches the executor at least once, so executors
should treat ``action_id`` together with the triggering indicator's
``fetch_time`` as an idempotency key.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from app.services.stream_consumer import StreamConsumer
from app.storage.event_log import EventLog
from core.models.events import ActionRequiredEvent

logger = logging.getLogger(__name__)


class ActionExecutor(Protocol):
    async def execute(self, event: ActionRequiredEvent) -> None: ...


class LoggingActionExecutor:
    """Default executor: logs the action and does nothing else."""

    async def execute(self, event: ActionRequiredEvent) -> None:
        triggering = event.triggering_indicator
        logger.info(
            f"ACTION {event.action_type.value} | strategy={event.strategy_id} "
            f"action={event.action_id} params={event.parameters} "
            f"trigger={triggering.get('indicator_type')} {triggering.get('symbol')} "
            f"{triggering.get('interval')}"
        )


class ActionDispatcher(StreamConsumer):
    """Reads action-required events and hands them to the executor."""

    def __init__(self, executor: ActionExecutor, event_log: EventLog, **kwargs: Any):
        super().__init__(event_log, **kwargs)
        self.executor = executor

    async def handle(self, fields: dict[Any, Any] | None) -> None:
        event = ActionRequiredEvent.from_fields(fields)
        logger.debug(f"Dispatching action {event.action_id} for strategy {event.strategy_id}")
        await self.executor.execute(event)
